"""Create the first ADMIN account from environment variables.

Usage: ADMIN_NAME=... ADMIN_EMAIL=... ADMIN_PASSWORD=... python seed_admin.py

Running it again with the same email leaves the existing account alone,
so it is safe to call on every deploy.
"""
import os
import sys
from typing import Tuple

from sqlmodel import Session

from konsider import models, repositories
from konsider.database import create_db_and_tables, engine
from konsider.services import PWD_CTX
from konsider.utils.validation import check_user


def seed_admin(session: Session, name: str, email: str, password: str) -> Tuple[models.User, bool]:
    """Return `(user, created)`; an existing account with `email` is returned untouched."""
    repo = repositories.UserRepository(session)
    existing = repo.get_by_email(email)
    if existing:
        return existing, False
    check_user(name, email, password)
    user = models.User(
        name=name,
        email=email,
        password_hash=PWD_CTX.hash(password),
        role=models.UserRole.ADMIN,
    )
    return repo.create(user), True


def describe(user: models.User, created: bool) -> str:
    if created:
        return f"Created admin: {user.email}"
    if user.role != models.UserRole.ADMIN:
        return f"Account {user.email} already exists with role {user.role.value}, not ADMIN"
    return f"Admin already exists: {user.email}"


def run():
    missing = [k for k in ("ADMIN_NAME", "ADMIN_EMAIL", "ADMIN_PASSWORD") if not os.getenv(k)]
    if missing:
        print("Missing environment variables:", ", ".join(missing))
        sys.exit(1)
    create_db_and_tables()
    with Session(engine) as session:
        user, created = seed_admin(
            session,
            os.environ["ADMIN_NAME"],
            os.environ["ADMIN_EMAIL"],
            os.environ["ADMIN_PASSWORD"],
        )
    print(describe(user, created))
    if user.role != models.UserRole.ADMIN:
        sys.exit(1)


if __name__ == '__main__':
    run()
