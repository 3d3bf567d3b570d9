import logging
from dataclasses import dataclass

import requests
from sqlalchemy import select

from .errors import Unauthorized
from .models import User

logger = logging.getLogger(__name__)

USER_TYPES = ("librarian", "member")


@dataclass(frozen=True)
class Principal:
    external_id: str
    name: str
    email: str
    user_type: str


@dataclass
class RequestContext:
    """What a handler knows about the caller: the token and the local user row."""
    token: str
    user: User


def bearer_token(header):
    if not header:
        return None
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
        return parts[1]
    return None


class IdentityClient:
    """
    Resolves bearer tokens against the identity service that issued them.
    """

    def __init__(self, base_url, timeout=3):
        self.base_url = base_url
        self.timeout = timeout

    def resolve(self, token):
        url = f"{self.base_url.rstrip('/')}/api/auth/me"
        try:
            resp = requests.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Identity service unreachable at %s: %s", url, e)
            raise Unauthorized("Identity service unavailable") from e

        if resp.status_code != 200:
            logger.info("Token rejected by identity service -> %s", resp.status_code)
            raise Unauthorized("Invalid or expired token")

        try:
            data = resp.json()
        except ValueError as e:
            logger.warning("Identity service sent a non-JSON body from %s", url)
            raise Unauthorized("Identity service returned an unreadable response") from e

        user = data.get("user", data) if isinstance(data, dict) else None
        if not isinstance(user, dict):
            logger.warning("Identity service sent an unexpected payload from %s", url)
            raise Unauthorized("Identity service returned an unreadable response")
        user_type = user.get("user_type")
        external_id = user.get("id")
        if external_id is None or user_type not in USER_TYPES:
            raise Unauthorized("Identity service returned an incomplete user")

        return Principal(
            external_id=str(external_id),
            name=user.get("name") or "",
            email=user.get("email") or "",
            user_type=user_type,
        )


def sync_user(session, principal):
    """Upsert the local mirror of ``principal`` and return it."""
    q = select(User).where(User.external_id == principal.external_id)
    user = session.execute(q).scalar_one_or_none()

    if user:
        user.name = principal.name
        user.email = principal.email
        user.user_type = principal.user_type
    else:
        user = User(
            external_id=principal.external_id,
            name=principal.name,
            email=principal.email,
            user_type=principal.user_type,
        )
        session.add(user)
        logger.info("Mirrored new %s %s", principal.user_type, principal.external_id)

    session.commit()
    return user
