"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users, tokens,
software, requesters, requests, reviews). Repositories return SQLModel
objects and commit on every write. Database constraint failures are
rolled back and surface as `ConflictError`; versioned updates that match
no row (missing record or stale `version`) do the same.
"""

import re
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import String, false, func, type_coerce, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .errors import ConflictError
from .utils.query_params import QueryParams

_WORD_RE = re.compile(r"[^\W_]+")


def word_match(column, value: str):
    """Case-insensitive whole-word match of every word in `value` against `column`.

    Words are runs of letters and digits; punctuation, underscores and
    whitespace all separate words, in the column as well as in `value`.
    """
    words = _WORD_RE.findall(value.lower())
    if not words:
        return [false()]
    text = type_coerce(column, String)
    return [text.regexp_match(f"(?i)(?:^|\\W|_){word}(?:\\W|_|$)") for word in words]


def exported_match(column, value: str):
    # anything but true/false matches nothing
    lowered = value.strip().lower()
    if lowered == "true":
        return [column.is_(True)]
    if lowered == "false":
        return [column.is_(False)]
    return [false()]


class _Repository:
    """Shared list/get/create/update/delete for one versioned table.

    Subclasses set `model`, `sort_columns` and `filter_columns` and may
    override `_joined` when filters reach into related tables.
    """
    model = None
    entity = "record"
    sort_columns: dict = {}
    filter_columns: dict = {}

    def __init__(self, session: Session):
        self.session = session

    def _joined(self, stmt):
        return stmt

    def _filter_clauses(self, field: str, value: str):
        return word_match(self.filter_columns[field], value)

    def list(self, params: QueryParams) -> Tuple[List, int]:
        """Return one page of records and the total count for `params`."""
        stmt = self._joined(select(self.model))
        count_stmt = self._joined(select(func.count(self.model.id)).select_from(self.model))
        if params.filter_field:
            clauses = self._filter_clauses(params.filter_field, params.filter_value)
            stmt = stmt.where(*clauses)
            count_stmt = count_stmt.where(*clauses)
        order = []
        if params.sort_field:
            column = self.sort_columns[params.sort_field]
            order.append(column.desc() if params.sort_descending else column.asc())
        order.append(self.model.id.asc())
        stmt = stmt.order_by(*order).offset(params.offset).limit(params.per_page)
        total = self.session.exec(count_stmt).one()
        return list(self.session.exec(stmt).all()), total

    def get(self, record_id: uuid.UUID):
        return self.session.get(self.model, record_id)

    def commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"{self.entity}: {exc.orig}")

    def create(self, record):
        """Persist a new record and return the refreshed instance."""
        self.session.add(record)
        self.commit()
        self.session.refresh(record)
        return record

    def update(self, record_id: uuid.UUID, version: int, values: dict) -> None:
        """Apply `values` only if the stored row still has `version`."""
        stmt = (
            update(self.model)
            .where(self.model.id == record_id, self.model.version == version)
            .values(**values, version=self.model.version + 1, updated_at=models.utc_now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.exec(stmt)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"{self.entity}: {exc.orig}")
        if result.rowcount == 0:
            raise ConflictError(f"{self.entity} {record_id}: edit conflict")

    def delete(self, record) -> None:
        self.session.delete(record)
        self.commit()


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""
    model = models.User
    entity = "user"
    sort_columns = {
        "name": models.User.name,
        "email": models.User.email,
        "role": models.User.role,
    }
    filter_columns = sort_columns

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def delete_with_tokens(self, user: models.User) -> None:
        """Delete the user's token rows and then the user, in one commit."""
        tokens = self.session.exec(select(models.UserToken).where(models.UserToken.user_id == user.id)).all()
        for token in tokens:
            self.session.delete(token)
        self.session.flush()
        self.session.delete(user)
        self.commit()


class UserTokenRepository:
    """Issued session tokens; rows are revoked, never edited otherwise."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, token: models.UserToken) -> models.UserToken:
        self.session.add(token)
        self.session.commit()
        return token

    def get_live(self, jti: uuid.UUID, user_id: uuid.UUID, now: datetime) -> Optional[models.UserToken]:
        """Return the token row if it is neither revoked nor expired."""
        stmt = select(models.UserToken).where(
            models.UserToken.jti == jti,
            models.UserToken.user_id == user_id,
            models.UserToken.revoked == False,  # noqa: E712
            models.UserToken.expires_at > now,
        )
        return self.session.exec(stmt).first()

    def revoke(self, jti: uuid.UUID) -> None:
        stmt = update(models.UserToken).where(models.UserToken.jti == jti).values(revoked=True)
        self.session.exec(stmt)
        self.session.commit()

    def revoke_all_for_user(self, user_id: uuid.UUID) -> int:
        stmt = (
            update(models.UserToken)
            .where(models.UserToken.user_id == user_id, models.UserToken.revoked == False)  # noqa: E712
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount

    def list_live(self, now: datetime) -> List[Tuple[uuid.UUID, uuid.UUID]]:
        """Return `(jti, user_id)` for every non-revoked, unexpired token."""
        stmt = select(models.UserToken.jti, models.UserToken.user_id).where(
            models.UserToken.revoked == False,  # noqa: E712
            models.UserToken.expires_at > now,
        )
        return [(row[0], row[1]) for row in self.session.exec(stmt).all()]


class SoftwareRepository(_Repository):
    model = models.Software
    entity = "software"
    sort_columns = {
        "software_name": models.Software.software_name,
        "developer_name": models.Software.developer_name,
    }
    filter_columns = sort_columns


class RequesterRepository(_Repository):
    model = models.Requester
    entity = "requester"
    sort_columns = {
        "name": models.Requester.name,
        "email": models.Requester.email,
        "department": models.Requester.department,
    }
    filter_columns = sort_columns


class SoftwareRequestRepository(_Repository):
    """Requests join their software and requester for filtering."""
    model = models.SoftwareRequest
    entity = "software request"
    filter_columns = {
        "td_request_id": models.SoftwareRequest.td_request_id,
        "software_name": models.Software.software_name,
        "requester_email": models.Requester.email,
    }

    def _joined(self, stmt):
        return (
            stmt.join(models.Software, models.SoftwareRequest.software_id == models.Software.id)
            .join(models.Requester, models.SoftwareRequest.requester_id == models.Requester.id)
        )


class SoftwareReviewRepository(_Repository):
    """Reviews, plus the single-transaction create of a whole review."""
    model = models.SoftwareReview
    entity = "software review"
    filter_columns = {
        "td_request_id": models.SoftwareRequest.td_request_id,
        "reviewer_email": models.User.email,
        "requester_email": models.Requester.email,
        "software_name": models.Software.software_name,
        "exported": models.SoftwareReview.exported,
    }

    def _joined(self, stmt):
        return (
            stmt.join(models.SoftwareRequest, models.SoftwareReview.software_request_id == models.SoftwareRequest.id)
            .join(models.Software, models.SoftwareRequest.software_id == models.Software.id)
            .join(models.Requester, models.SoftwareRequest.requester_id == models.Requester.id)
            .join(models.User, models.SoftwareReview.reviewer_id == models.User.id)
        )

    def _filter_clauses(self, field: str, value: str):
        if field == "exported":
            return exported_match(models.SoftwareReview.exported, value)
        return super()._filter_clauses(field, value)

    def create_full(
        self,
        software: models.Software,
        requester: models.Requester,
        request: models.SoftwareRequest,
        review: models.SoftwareReview,
    ) -> models.SoftwareReview:
        """Insert software, requester, request and review in one transaction.

        Ids are assigned up front so the rows can reference each other
        before the flush; on any constraint failure nothing is persisted.
        """
        request.software_id = software.id
        request.requester_id = requester.id
        review.software_request_id = request.id
        self.session.add(software)
        self.session.add(requester)
        self.session.add(request)
        self.session.add(review)
        self.commit()
        self.session.refresh(review)
        return review
