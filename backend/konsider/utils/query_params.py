"""List query parameters: parsing, validation and pagination metadata."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from fastapi import Request

from ..errors import QueryParamError
from .validation import text_length

ALLOWED_KEYS = ("page", "per_page", "sort", "filter")
MAX_PAGE = 10_000_000
MAX_PER_PAGE = 100
DEFAULT_PER_PAGE = 10
MAX_FILTER_LENGTH = 100
FILTER_FORBIDDEN_CHARS = frozenset('/()"<>\\{}$\'-;%')


@dataclass
class QueryParams:
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    sort: Optional[str] = None
    filter_field: Optional[str] = None
    filter_value: Optional[str] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def sort_field(self) -> Optional[str]:
        if not self.sort:
            return None
        return self.sort.lstrip("-")

    @property
    def sort_descending(self) -> bool:
        return bool(self.sort) and self.sort.startswith("-")


def _parse_bounded_int(name: str, raw: str, upper: int) -> int:
    # plain ASCII digits only: no sign, whitespace or underscores
    if not (isinstance(raw, str) and raw.isascii() and raw.isdigit() and len(raw) <= 20):
        raise QueryParamError(f"'{raw}' is an invalid {name} query param")
    value = int(raw)
    if value < 1 or value > upper:
        raise QueryParamError(f"'{raw}' is an invalid {name} query param")
    return value


def is_valid_filter_value(value: str) -> bool:
    if not value.strip():
        return False
    if text_length(value) > MAX_FILTER_LENGTH:
        return False
    if any(ch in FILTER_FORBIDDEN_CHARS for ch in value):
        return False
    return "--" not in value and "/*" not in value


def parse_query_params(
    items: Sequence[tuple[str, str]],
    sort_fields: Sequence[str] = (),
    filter_fields: Sequence[str] = (),
) -> QueryParams:
    """Validate raw `(key, value)` pairs from a query string.

    `sort_fields` and `filter_fields` are the per-resource safe lists; a
    sort field may be prefixed with `-` for descending order. Raises
    `QueryParamError` on any unknown, repeated or invalid parameter.
    """
    seen = {}
    for key, value in items:
        if key not in ALLOWED_KEYS:
            raise QueryParamError(f"unexpected query parameter: '{key}'")
        if key in seen:
            raise QueryParamError(f"query parameter '{key}' given more than once")
        seen[key] = value

    params = QueryParams()
    if "page" in seen:
        params.page = _parse_bounded_int("page", seen["page"], MAX_PAGE)
    if "per_page" in seen:
        params.per_page = _parse_bounded_int("per_page", seen["per_page"], MAX_PER_PAGE)

    if "sort" in seen:
        sort = seen["sort"]
        if sort not in sort_fields and not (sort.startswith("-") and sort[1:] in sort_fields):
            raise QueryParamError(f"'{sort}' is an invalid sort query param")
        params.sort = sort

    if "filter" in seen:
        raw = seen["filter"]
        parts = raw.split(":")
        if len(parts) != 2:
            raise QueryParamError(f"'{raw}' is an invalid filter format. Use 'filter=field:value'")
        field, value = parts
        if field not in filter_fields:
            raise QueryParamError(f"'{field}' is an invalid filter field")
        if not is_valid_filter_value(value):
            raise QueryParamError(f"'{field}' has an invalid filter value")
        params.filter_field = field
        params.filter_value = value
    return params


class ListQuery:
    """FastAPI dependency validating list query params for one resource."""

    def __init__(self, sort_fields: Sequence[str] = (), filter_fields: Sequence[str] = ()):
        self.sort_fields = tuple(sort_fields)
        self.filter_fields = tuple(filter_fields)

    def __call__(self, request: Request) -> QueryParams:
        return parse_query_params(request.query_params.multi_items(), self.sort_fields, self.filter_fields)


def build_metadata(total_records: int, params: QueryParams) -> dict:
    """Return pagination metadata, or `{}` when there is nothing to page."""
    if total_records == 0:
        return {}
    return {
        "current_page": params.page,
        "per_page": params.per_page,
        "first_page": 1,
        "last_page": math.ceil(total_records / params.per_page),
        "total_records": total_records,
    }


def envelope(plural: str, singular: str, items: list, metadata: dict) -> dict:
    return {
        "metadata": metadata,
        plural: [{singular: item} for item in items],
    }
