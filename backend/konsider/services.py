"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
validators and auxiliary logic. Services are intentionally thin: they
validate payloads, execute domain logic and persist records via
repositories. Responses are returned as plain JSON-ready dicts.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

import jwt
from passlib.context import CryptContext
from pydantic import ValidationError as SchemaError
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .errors import (
    InvalidCredentialsError,
    NoUpdatesError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from .utils import validation
from .utils.pdf import render_review_pdf
from .utils.query_params import QueryParams, build_metadata, envelope
from .utils.token_cache import TokenCache

LOGGER = logging.getLogger("konsider.auth")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "iat", "exp", "jti"]

# verified against when the email is unknown so both failures cost the same
_DUMMY_HASH = PWD_CTX.hash("dummy-password")


def _log(event: str, **fields) -> None:
    LOGGER.info("%s %s", event, json.dumps(fields, ensure_ascii=True, default=str))


def create_token(user: models.User) -> Tuple[str, schemas.TokenClaims]:
    """Sign a new session token for `user` and return it with its claims."""
    issued = int(time.time())
    payload = {
        "sub": str(user.id),
        "role": models.UserRole(user.role).value,
        "iat": issued,
        "exp": issued + settings.JWT_EXPIRE_MINUTES * 60,
        "jti": str(uuid.uuid4()),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token, schemas.TokenClaims(**payload)


def decode_token(token: str) -> schemas.TokenClaims:
    """Verify signature, expiry and required claims of `token`."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"require": REQUIRED_CLAIMS},
        )
        return schemas.TokenClaims(**payload)
    except jwt.ExpiredSignatureError:
        raise NotAuthenticatedError("token expired")
    except (jwt.PyJWTError, SchemaError) as exc:
        raise NotAuthenticatedError(f"invalid token: {exc}")


def live_tokens(session: Session):
    """Return the `(jti, user_id)` pairs the token cache should hold."""
    return repositories.UserTokenRepository(session).list_live(models.utc_now())


class AuthService:
    """Login, logout, token checks and revocation."""
    def __init__(self, session: Session, cache: TokenCache):
        self.session = session
        self.cache = cache
        self.user_repo = repositories.UserRepository(session)
        self.token_repo = repositories.UserTokenRepository(session)

    def login(self, email: str, password: str) -> Tuple[str, schemas.TokenClaims]:
        """Verify credentials and issue a session token.

        The token's `jti` is stored so that it can later be revoked, and
        is added to the cache so the next request skips the database.
        """
        user = self.user_repo.get_by_email(email)
        if user is None:
            PWD_CTX.verify(password, _DUMMY_HASH)
            raise InvalidCredentialsError(f"login: unknown email {email}")
        if not PWD_CTX.verify(password, user.password_hash):
            raise InvalidCredentialsError(f"login: wrong password for {user.id}")
        token, claims = create_token(user)
        self.token_repo.create(
            models.UserToken(
                jti=claims.jti,
                user_id=user.id,
                expires_at=datetime.fromtimestamp(claims.exp, tz=timezone.utc),
            )
        )
        self.cache.insert(claims.jti, claims.sub)
        _log("login_success", user_id=user.id, role=claims.role.value)
        return token, claims

    def authenticate(self, token: str) -> schemas.TokenClaims:
        """Return the claims of a valid, non-revoked token."""
        claims = decode_token(token)
        if self.cache.is_valid(claims.jti, claims.sub):
            return claims
        # a revocation between the read and the insert must win
        since = self.cache.removals
        row = self.token_repo.get_live(claims.jti, claims.sub, models.utc_now())
        if row is None:
            raise NotAuthenticatedError(f"token {claims.jti} revoked or unknown")
        self.cache.insert(claims.jti, claims.sub, since=since)
        return claims

    def logout(self, claims: schemas.TokenClaims) -> None:
        self.token_repo.revoke(claims.jti)
        self.cache.remove(claims.jti, claims.sub)
        _log("logout", user_id=claims.sub)

    def revoke_user(self, user_id: uuid.UUID) -> int:
        """Revoke every token of `user_id`; raises if the user is unknown."""
        if self.user_repo.get(user_id) is None:
            raise NotFoundError(f"user {user_id} not found")
        revoked = self.token_repo.revoke_all_for_user(user_id)
        self.cache.remove_user(user_id)
        _log("tokens_revoked", user_id=user_id, count=revoked)
        return revoked

    def change_password(self, claims: schemas.TokenClaims, current_password: str, new_password: str) -> None:
        user = self.user_repo.get(claims.sub)
        if user is None:
            raise NotAuthenticatedError(f"user {claims.sub} no longer exists")
        if not PWD_CTX.verify(current_password, user.password_hash):
            raise InvalidCredentialsError(f"password change: wrong current password for {user.id}")
        if new_password == current_password:
            raise ValidationError("password change: new password matches the current one")
        if not validation.is_valid_password(new_password):
            raise ValidationError("password change: invalid new password")
        self.user_repo.update(user.id, user.version, {"password_hash": PWD_CTX.hash(new_password)})
        self.logout(claims)


class _CrudService:
    """List/get/create/update/delete shared by the collection services.

    Subclasses name their repository, output schema, envelope keys and
    the record `fields` passed to `validate` when merging updates.
    """
    repository = None
    out_schema = None
    plural = ""
    singular = ""
    fields: tuple = ()

    def __init__(self, session: Session):
        self.session = session
        self.repo = self.repository(session)

    @staticmethod
    def validate(values: dict) -> None:
        raise NotImplementedError

    def dump(self, record) -> dict:
        return self.out_schema.model_validate(record).model_dump(mode="json")

    def list(self, params: QueryParams) -> dict:
        records, total = self.repo.list(params)
        return envelope(self.plural, self.singular, [self.dump(r) for r in records], build_metadata(total, params))

    def fetch(self, record_id: uuid.UUID):
        record = self.repo.get(record_id)
        if record is None:
            raise NotFoundError(f"{self.singular} {record_id} not found")
        return record

    def get(self, record_id: uuid.UUID) -> dict:
        return {self.singular: self.dump(self.fetch(record_id))}

    def create(self, payload) -> dict:
        values = payload.model_dump()
        self.validate(values)
        record = self.repo.create(self.repo.model(**values))
        return {self.singular: self.dump(record)}

    def update(self, record_id: uuid.UUID, payload) -> None:
        """Merge the provided fields into the record and save if unchanged since read."""
        updates = payload.model_dump(exclude_none=True)
        if not updates:
            raise NoUpdatesError(f"{self.singular} {record_id}: no updates provided")
        record = self.fetch(record_id)
        merged = {field: getattr(record, field) for field in self.fields}
        merged.update(updates)
        self.validate(merged)
        self.repo.update(record_id, record.version, updates)

    def delete(self, record_id: uuid.UUID) -> None:
        self.repo.delete(self.fetch(record_id))


class UserService(_CrudService):
    """User management for administrators."""
    repository = repositories.UserRepository
    out_schema = schemas.UserOut
    plural = "users"
    singular = "user"
    fields = ("name", "email", "role")

    def __init__(self, session: Session, cache: TokenCache):
        super().__init__(session)
        self.cache = cache

    @staticmethod
    def validate(values: dict) -> None:
        validation.check_user(values["name"], values["email"], values.get("password"))

    def create(self, payload: schemas.UserCreateIn) -> dict:
        self.validate(payload.model_dump())
        user = models.User(
            name=payload.name,
            email=payload.email,
            password_hash=PWD_CTX.hash(payload.password),
            role=payload.role,
        )
        user = self.repo.create(user)
        _log("user_created", user_id=user.id, role=user.role)
        return {"user": self.dump(user)}

    def update(self, record_id: uuid.UUID, payload: schemas.UserUpdateIn) -> None:
        existing = self.repo.get(record_id)
        previous_role = existing.role if existing is not None else None
        super().update(record_id, payload)
        # tokens carry the role, so a role change must force a new login
        if payload.role is not None and payload.role != previous_role:
            repositories.UserTokenRepository(self.session).revoke_all_for_user(record_id)
            self.cache.remove_user(record_id)

    def delete(self, record_id: uuid.UUID) -> None:
        user = self.fetch(record_id)
        self.repo.delete_with_tokens(user)
        self.cache.remove_user(record_id)
        _log("user_deleted", user_id=record_id)


class SoftwareService(_CrudService):
    repository = repositories.SoftwareRepository
    out_schema = schemas.SoftwareOut
    plural = "software"
    singular = "software"
    fields = ("software_name", "software_version", "developer_name", "description")

    @staticmethod
    def validate(values: dict) -> None:
        validation.check_software(
            values["software_name"], values["software_version"], values["developer_name"], values["description"]
        )


class RequesterService(_CrudService):
    repository = repositories.RequesterRepository
    out_schema = schemas.RequesterOut
    plural = "requesters"
    singular = "requester"
    fields = ("name", "email", "department")

    @staticmethod
    def validate(values: dict) -> None:
        validation.check_requester(values["name"], values["email"], values["department"])


class SoftwareRequestService(_CrudService):
    repository = repositories.SoftwareRequestRepository
    out_schema = schemas.SoftwareRequestOut
    plural = "software_requests"
    singular = "software_request"
    fields = ("td_request_id",)

    @staticmethod
    def validate(values: dict) -> None:
        validation.check_td_request_id(values["td_request_id"])


class SoftwareReviewService(_CrudService):
    """Reviews: nested create, partial update and PDF export."""
    repository = repositories.SoftwareReviewRepository
    out_schema = schemas.SoftwareReviewOut
    plural = "software_reviews"
    singular = "software_review"
    fields = models.REVIEW_OPTION_FIELDS + ("review_notes",)

    @staticmethod
    def validate(values: dict) -> None:
        validation.check_review_notes(values["review_notes"])

    def create(self, payload: schemas.SoftwareReviewIn, reviewer_id: Optional[uuid.UUID] = None) -> dict:
        """Validate every nested record, then insert them all together."""
        nested = payload.software_request
        software_values = nested.software.model_dump()
        requester_values = nested.requester.model_dump()
        SoftwareService.validate(software_values)
        RequesterService.validate(requester_values)
        validation.check_td_request_id(nested.td_request_id)
        self.validate(payload.model_dump())

        options = {field: getattr(payload, field) for field in models.REVIEW_OPTION_FIELDS}
        review = self.repo.create_full(
            models.Software(**software_values),
            models.Requester(**requester_values),
            models.SoftwareRequest(td_request_id=nested.td_request_id),
            models.SoftwareReview(reviewer_id=reviewer_id, review_notes=payload.review_notes, **options),
        )
        _log("review_created", review_id=review.id, reviewer_id=reviewer_id)
        return {self.singular: self.dump(review)}

    def export_pdf(self, record_id: uuid.UUID) -> Tuple[str, bytes]:
        """Render the review as a PDF and mark it exported.

        Returns `(filename, content)`. The `exported` flag is written with
        the version check, so a concurrent edit makes the export fail.
        """
        review = self.fetch(record_id)
        request = review.software_request
        content = render_review_pdf(
            software_name=request.software.software_name,
            td_request_id=request.td_request_id,
            reviewed_at=review.created_at,
            reviewer_name=review.reviewer.name,
            answers={field: getattr(review, field) for field in models.REVIEW_OPTION_FIELDS},
            review_notes=review.review_notes,
        )
        filename = f"{request.software.software_name}.pdf"
        if not review.exported:
            self.repo.update(record_id, review.version, {"exported": True})
        _log("review_exported", review_id=record_id)
        return filename, content

