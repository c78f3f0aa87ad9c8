"""Field validators shared by the services.

Each `is_valid_*` helper returns a bool; the `check_*` helpers raise
`ValidationError` with a message naming the offending field so services
can validate a whole record in one call.
"""

from __future__ import annotations

import re

import regex

from ..errors import ValidationError

FORBIDDEN_CHARS = frozenset('/()"<>\\{}$\'-')

# WHATWG HTML5 "valid e-mail address" grammar
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_VERSION_RE = re.compile(r"^\d{1,4}\.\d{1,4}\.\d{1,4}$", re.ASCII)
_TD_REQUEST_ID_RE = re.compile(r"^\d{8}$", re.ASCII)
_GRAPHEME_RE = regex.compile(r"\X")


def text_length(value: str) -> int:
    """Count user-perceived characters (extended grapheme clusters)."""
    return len(_GRAPHEME_RE.findall(value))


def has_forbidden_chars(value: str) -> bool:
    return any(ch in FORBIDDEN_CHARS for ch in value)


def is_valid_text(value: str, max_length: int, min_length: int = 1) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    length = text_length(value)
    if length < min_length or length > max_length:
        return False
    return not has_forbidden_chars(value)


def is_valid_email(email: str) -> bool:
    if not isinstance(email, str):
        return False
    parts = email.split("@")
    if len(parts) != 2 or not parts[1]:
        return False
    return bool(_EMAIL_RE.match(email))


def is_valid_password(password: str) -> bool:
    return is_valid_text(password, max_length=128, min_length=8)


def is_valid_software_version(version: str) -> bool:
    return isinstance(version, str) and bool(_VERSION_RE.match(version))


def is_valid_td_request_id(td_request_id: str) -> bool:
    return isinstance(td_request_id, str) and bool(_TD_REQUEST_ID_RE.match(td_request_id))


def check_text(entity: str, field: str, value: str, max_length: int) -> None:
    if not is_valid_text(value, max_length):
        raise ValidationError(f"{entity} payload: '{value}' is an invalid {field}")


def check_email(entity: str, email: str) -> None:
    if not is_valid_email(email):
        raise ValidationError(f"{entity} payload: '{email}' is an invalid email")


def check_user(name: str, email: str, password: str | None = None) -> None:
    """Validate a user; pass `password=None` for partial updates."""
    check_text("user", "name", name, 128)
    check_email("user", email)
    if password is not None and not is_valid_password(password):
        raise ValidationError("user payload: invalid password provided")


def check_requester(name: str, email: str, department: str) -> None:
    check_text("requester", "name", name, 100)
    check_email("requester", email)
    check_text("requester", "department", department, 100)


def check_software(software_name: str, software_version: str, developer_name: str, description: str) -> None:
    check_text("software", "software_name", software_name, 100)
    if not is_valid_software_version(software_version) or has_forbidden_chars(software_version):
        raise ValidationError(f"software payload: '{software_version}' is an invalid software_version")
    check_text("software", "developer_name", developer_name, 100)
    check_text("software", "description", description, 255)


def check_td_request_id(td_request_id: str) -> None:
    if not is_valid_td_request_id(td_request_id):
        raise ValidationError(f"request payload: '{td_request_id}' is an invalid td_request_id")


def check_review_notes(review_notes: str) -> None:
    check_text("review", "review_notes", review_notes, 255)
