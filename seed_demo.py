# seed_demo.py
import os

import requests

LENDING_BASE_URL = os.getenv("LENDING_BASE_URL", "http://localhost:5000")
# Bearer token of a librarian account, issued by the identity service
LIBRARIAN_TOKEN = os.getenv("LIBRARIAN_TOKEN", "")

BOOKS = [
    {
        "isbn": "978-0132350884",
        "title": "Clean Code",
        "author": "Robert C. Martin",
        "genre": "Software Engineering",
    },
    {
        "isbn": "978-0201616224",
        "title": "The Pragmatic Programmer",
        "author": "Andrew Hunt, David Thomas",
        "genre": "Software Engineering",
    },
    {
        "isbn": "978-0441172719",
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "Science Fiction",
    },
    {
        "isbn": "978-0451524935",
        "title": "1984",
        "author": "George Orwell",
        "genre": "Dystopian",
    },
    {
        "isbn": "978-0061120084",
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "genre": "Fiction",
    },
    {
        "isbn": "978-1491950357",
        "title": "Designing Data-Intensive Applications",
        "author": "Martin Kleppmann",
        "genre": "Software Engineering",
    },
    {
        "isbn": "978-0547928227",
        "title": "The Hobbit",
        "author": "J.R.R. Tolkien",
        "genre": "Fantasy",
    },
]


def check_service(url):
    """Hit /api/health and return True/False."""
    health_url = f"{url.rstrip('/')}/api/health"
    try:
        r = requests.get(health_url, timeout=3)
        print(f"[CHECK] {health_url} -> {r.status_code}")
        return r.ok
    except requests.RequestException as e:
        print(f"[ERROR] lending service not reachable at {health_url}: {e}")
        return False


def seed_books():
    print(f"\n== Seeding books into {LENDING_BASE_URL} ==")
    headers = {"Authorization": f"Bearer {LIBRARIAN_TOKEN}"}

    for i, book in enumerate(BOOKS, start=1):
        payload = dict(book)
        # vary copies per title to make availability more interesting
        payload["total_copies"] = 2 + (i % 4)  # 2–5 copies

        try:
            resp = requests.post(
                f"{LENDING_BASE_URL}/api/books",
                headers=headers,
                json=payload,
                timeout=5,
            )
            print(f"  [{i:02}] {book['title']} -> {resp.status_code}")
            if not resp.ok:
                print(f"      Body: {resp.text.strip()}")
        except requests.RequestException as e:
            print(f"  [{i:02}] {book['title']} -> FAILED: {e}")


def main():
    if not LIBRARIAN_TOKEN:
        print("Set LIBRARIAN_TOKEN to a librarian bearer token first.")
        return

    print("Checking lending service...")
    if not check_service(LENDING_BASE_URL):
        print("\nLending service is not reachable. Make sure it is running.")
        return

    seed_books()

    print("\nDone.")
    print("Try hitting:")
    print(f"  {LENDING_BASE_URL}/api/books?sort=title&page=1")


if __name__ == "__main__":
    main()
