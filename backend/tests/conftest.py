"""Shared fixtures: a throwaway SQLite database and logged-in clients.

Environment variables are set at import time because `konsider.config`
reads them once when the app is first imported.
"""
import itertools
import os
import tempfile
import uuid
from pathlib import Path

import pytest

_DB_PATH = Path(tempfile.gettempdir()) / f"konsider_test_{os.getpid()}.db"
if _DB_PATH.exists():
    _DB_PATH.unlink()
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["ENVIRONMENT"] = "local"
# host-only cookie so the test client's cookie jar keeps it for "testserver"
os.environ["COOKIE_DOMAIN"] = ""
os.environ["COOKIE_SECURE"] = "false"
os.environ["LOGIN_RATE_LIMIT_PER_MIN"] = "1000"
os.environ.pop("LOG_DIR", None)

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from konsider import models, repositories  # noqa: E402
from konsider.database import engine  # noqa: E402
from konsider.main import app  # noqa: E402
from konsider.services import PWD_CTX  # noqa: E402

API = "/api/v1"

ADMIN = {"name": "Ada Admin", "email": "admin@example.com", "password": "AdminPass123"}
REVIEWER = {"name": "Rey Reviewer", "email": "reviewer@example.com", "password": "ReviewPass123"}

_td_request_ids = itertools.count(20000000)


def ensure_user(name: str, email: str, password: str, role: models.UserRole) -> uuid.UUID:
    """Create the user if missing and return its id."""
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get_by_email(email)
        if user is None:
            user = repo.create(
                models.User(name=name, email=email, password_hash=PWD_CTX.hash(password), role=role)
            )
        return user.id


def login_client(email: str, password: str) -> TestClient:
    client = TestClient(app)
    r = client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return client


def unique_word(prefix: str = "w") -> str:
    return f"{prefix}{uuid.uuid4().hex[:10]}"


@pytest.fixture
def admin_id():
    return ensure_user(ADMIN["name"], ADMIN["email"], ADMIN["password"], models.UserRole.ADMIN)


@pytest.fixture
def reviewer_id():
    return ensure_user(REVIEWER["name"], REVIEWER["email"], REVIEWER["password"], models.UserRole.REVIEWER)


@pytest.fixture
def admin_client(admin_id):
    return login_client(ADMIN["email"], ADMIN["password"])


@pytest.fixture
def reviewer_client(reviewer_id):
    return login_client(REVIEWER["email"], REVIEWER["password"])


@pytest.fixture
def anon_client():
    return TestClient(app)


@pytest.fixture
def new_user(admin_client):
    """Create a fresh reviewer through the API; returns `(id, email, password)`."""
    def create(role: str = "REVIEWER", password: str = "StartPass123"):
        email = f"{unique_word('user')}@example.com"
        r = admin_client.post(
            f"{API}/users",
            json={"name": "Temp User", "email": email, "password": password, "role": role},
        )
        assert r.status_code == 201, r.text
        return r.json()["user"]["id"], email, password
    return create


@pytest.fixture
def software_payload():
    def build(**overrides):
        payload = {
            "software_name": unique_word("Tool"),
            "software_version": "1.0.0",
            "developer_name": "Acme Labs",
            "description": "Note taking editor",
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def requester_payload():
    def build(**overrides):
        payload = {
            "name": "Riley Requester",
            "email": f"{unique_word('req')}@example.com",
            "department": "Biology",
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def review_payload(software_payload, requester_payload):
    def build(software=None, requester=None, td_request_id=None, **overrides):
        payload = {
            "software_request": {
                "td_request_id": td_request_id or str(next(_td_request_ids)),
                "software": software or software_payload(),
                "requester": requester or requester_payload(),
            },
            "is_supported": "TRUE",
            "is_current_version": "TRUE",
            "is_reputation_good": "TRUE",
            "is_installation_from_developer": "FALSE",
            "is_local_admin_required": "NOT_SURE",
            "is_connected_to_brockport_cloud": "TRUE",
            "is_connected_to_cloud_services_or_client": "FALSE",
            "is_security_or_optimization_software": "TRUE",
            "is_supported_by_current_os": "TRUE",
            "review_notes": "Looks fine for lab machines",
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def td_request_id():
    return str(next(_td_request_ids))
