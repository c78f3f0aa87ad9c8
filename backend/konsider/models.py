"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; relationships are declared one-way where
the API needs the related record to build a response.

Mutable records carry a `version` column used for optimistic locking:
every update must match the stored version and increments it.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    REVIEWER = "REVIEWER"


class ReviewOptions(str, enum.Enum):
    """Answer to a single installation criterion of a review."""
    TRUE = "TRUE"
    FALSE = "FALSE"
    NOT_SURE = "NOT_SURE"


# Order matters: the PDF export lists criteria in this order.
REVIEW_OPTION_FIELDS = (
    "is_supported",
    "is_current_version",
    "is_reputation_good",
    "is_installation_from_developer",
    "is_local_admin_required",
    "is_connected_to_brockport_cloud",
    "is_connected_to_cloud_services_or_client",
    "is_security_or_optimization_software",
    "is_supported_by_current_os",
)


class User(SQLModel, table=True):
    """An account allowed to sign in.

    Fields:
    - `email`: unique login identifier
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `ADMIN` may manage users, `REVIEWER` may not
    """
    __tablename__ = "user_account"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: UserRole = Field(default=UserRole.REVIEWER)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, nullable=False)


class UserToken(SQLModel, table=True):
    """An issued JWT, identified by its `jti` claim.

    Rows are never deleted on logout; `revoked` is flipped instead so the
    token cache worker can rebuild the set of live tokens.
    """
    __tablename__ = "user_token"

    jti: uuid.UUID = Field(primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user_account.id", index=True)
    revoked: bool = Field(default=False, index=True)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)


class Software(SQLModel, table=True):
    """A software product that may be requested for installation."""
    __tablename__ = "software"
    __table_args__ = (UniqueConstraint("software_name", "software_version"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    software_name: str = Field(index=True)
    software_version: str
    developer_name: str
    description: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, nullable=False)


class Requester(SQLModel, table=True):
    """A person who asked for a piece of software."""
    __tablename__ = "requester"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    department: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, nullable=False)


class SoftwareRequest(SQLModel, table=True):
    """A ticketed request (`td_request_id`) linking a requester to software."""
    __tablename__ = "software_request"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    td_request_id: str = Field(index=True, unique=True)
    software_id: uuid.UUID = Field(foreign_key="software.id")
    requester_id: uuid.UUID = Field(foreign_key="requester.id")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, nullable=False)
    software: Optional[Software] = Relationship()
    requester: Optional[Requester] = Relationship()


class SoftwareReview(SQLModel, table=True):
    """A reviewer's answers to the installation criteria for one request.

    Fields:
    - the nine `REVIEW_OPTION_FIELDS`, each a `ReviewOptions` value
    - `exported`: set once the review has been downloaded as a PDF
    - `review_notes`: free-form notes printed at the end of the PDF
    """
    __tablename__ = "software_review"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    software_request_id: uuid.UUID = Field(foreign_key="software_request.id", unique=True)
    reviewer_id: uuid.UUID = Field(foreign_key="user_account.id", index=True)
    is_supported: ReviewOptions
    is_current_version: ReviewOptions
    is_reputation_good: ReviewOptions
    is_installation_from_developer: ReviewOptions
    is_local_admin_required: ReviewOptions
    is_connected_to_brockport_cloud: ReviewOptions
    is_connected_to_cloud_services_or_client: ReviewOptions
    is_security_or_optimization_software: ReviewOptions
    is_supported_by_current_os: ReviewOptions
    exported: bool = Field(default=False)
    review_notes: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, nullable=False)
    software_request: Optional[SoftwareRequest] = Relationship()
    reviewer: Optional[User] = Relationship()
