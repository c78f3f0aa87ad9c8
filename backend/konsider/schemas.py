"""Pydantic request/response schemas used by the API.

Request schemas only check JSON shape and types; field rules (lengths,
forbidden characters, formats) live in `utils.validation` and are
applied by the services so that partial updates are validated against
the merged record. Response schemas are built from ORM objects with
`from_attributes`.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import ReviewOptions, UserRole


class CredentialsIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class ChangePasswordIn(BaseModel):
    """Payload for changing the caller's own password."""
    current_password: str
    new_password: str


class UserCreateIn(BaseModel):
    name: str
    email: str
    password: str
    role: UserRole


class UserUpdateIn(BaseModel):
    """Partial user update; omitted or null fields are left unchanged."""
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None


class SoftwareIn(BaseModel):
    software_name: str
    software_version: str
    developer_name: str
    description: str


class SoftwareUpdateIn(BaseModel):
    software_name: Optional[str] = None
    software_version: Optional[str] = None
    developer_name: Optional[str] = None
    description: Optional[str] = None


class RequesterIn(BaseModel):
    name: str
    email: str
    department: str


class RequesterUpdateIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None


class SoftwareRequestIn(BaseModel):
    """Links existing software and requester records under a ticket id."""
    td_request_id: str
    software_id: uuid.UUID
    requester_id: uuid.UUID


class SoftwareRequestUpdateIn(BaseModel):
    td_request_id: Optional[str] = None


class NestedSoftwareRequestIn(BaseModel):
    """Request section of a review payload; software and requester are created with it."""
    td_request_id: str
    software: SoftwareIn
    requester: RequesterIn


class SoftwareReviewIn(BaseModel):
    """Full review payload. Every record it describes is created together."""
    software_request: NestedSoftwareRequestIn
    is_supported: ReviewOptions
    is_current_version: ReviewOptions
    is_reputation_good: ReviewOptions
    is_installation_from_developer: ReviewOptions
    is_local_admin_required: ReviewOptions
    is_connected_to_brockport_cloud: ReviewOptions
    is_connected_to_cloud_services_or_client: ReviewOptions
    is_security_or_optimization_software: ReviewOptions
    is_supported_by_current_os: ReviewOptions
    review_notes: str


class SoftwareReviewUpdateIn(BaseModel):
    is_supported: Optional[ReviewOptions] = None
    is_current_version: Optional[ReviewOptions] = None
    is_reputation_good: Optional[ReviewOptions] = None
    is_installation_from_developer: Optional[ReviewOptions] = None
    is_local_admin_required: Optional[ReviewOptions] = None
    is_connected_to_brockport_cloud: Optional[ReviewOptions] = None
    is_connected_to_cloud_services_or_client: Optional[ReviewOptions] = None
    is_security_or_optimization_software: Optional[ReviewOptions] = None
    is_supported_by_current_os: Optional[ReviewOptions] = None
    review_notes: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    created_at: datetime


class SoftwareOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    software_name: str
    software_version: str
    developer_name: str
    description: str
    created_at: datetime


class RequesterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    department: str
    created_at: datetime


class SoftwareRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    td_request_id: str
    software: SoftwareOut
    requester: RequesterOut
    created_at: datetime


class SoftwareReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    software_request: SoftwareRequestOut
    reviewer: UserOut
    is_supported: ReviewOptions
    is_current_version: ReviewOptions
    is_reputation_good: ReviewOptions
    is_installation_from_developer: ReviewOptions
    is_local_admin_required: ReviewOptions
    is_connected_to_brockport_cloud: ReviewOptions
    is_connected_to_cloud_services_or_client: ReviewOptions
    is_security_or_optimization_software: ReviewOptions
    is_supported_by_current_os: ReviewOptions
    exported: bool
    review_notes: str
    created_at: datetime


class TokenClaims(BaseModel):
    """Decoded JWT claims of an authenticated request."""
    sub: uuid.UUID
    role: UserRole
    iat: int
    exp: int
    jti: uuid.UUID

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
