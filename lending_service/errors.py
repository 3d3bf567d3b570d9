class LendingError(Exception):
    """
    Base for every failure the lending core reports.

    ``kind`` is the stable tag the HTTP layer exposes to clients; ``status``
    is the response code it maps to.
    """
    kind = "LendingError"
    status = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__.strip())
        self.message = str(self)

    def to_dict(self):
        return {"error": self.message, "kind": self.kind}


class Unavailable(LendingError):
    """No copies available, or the user already holds this book."""
    kind = "Unavailable"
    status = 422


class AlreadyReturned(LendingError):
    """Book already returned."""
    kind = "AlreadyReturned"
    status = 422


class NotFound(LendingError):
    """Record not found."""
    kind = "NotFound"
    status = 404


class InvariantViolation(LendingError):
    """Copy counts are inconsistent."""
    kind = "InvariantViolation"
    status = 500


class Forbidden(LendingError):
    """Access denied."""
    kind = "Forbidden"
    status = 403


class Unauthorized(LendingError):
    """Authentication required."""
    kind = "Unauthorized"
    status = 401


class Conflict(LendingError):
    """Record conflicts with an existing one."""
    kind = "Conflict"
    status = 409


class ValidationFailed(LendingError):
    """Validation failed."""
    kind = "ValidationFailed"
    status = 422

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))

    def to_dict(self):
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload
