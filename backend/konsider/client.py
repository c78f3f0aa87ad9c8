"""HTTP client for the Konsider API.

`KonsiderClient.fetch_request` makes exactly one attempt and never
raises for HTTP or transport failures: every outcome is folded into an
`ApiResponse` holding either `success` or `error`. This is what scripts
and the frontend tooling use to talk to the backend.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx

LOGGER = logging.getLogger("konsider.client")

COOKIE_NAME = "id"
DEFAULT_TIMEOUT = 10.0
DEFAULT_PDF_NAME = "review.pdf"
UNEXPECTED_ERROR = "an unexpected error occurred"
_FILENAME_RE = re.compile(r'filename="(.+)"')


@dataclass
class ApiErrorInfo:
    status: int
    message: str


@dataclass
class ApiResponse:
    success: Any = None
    error: Optional[ApiErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, status: int, message: str) -> "ApiResponse":
        return cls(error=ApiErrorInfo(status=status, message=message))


@dataclass
class PdfDownload:
    filename: str
    content: bytes


def pdf_filename(content_disposition: Optional[str]) -> str:
    match = _FILENAME_RE.search(content_disposition or "")
    return match.group(1) if match else DEFAULT_PDF_NAME


def error_message(response: httpx.Response) -> str:
    """Best message for a failed response.

    A JSON body yields its `error` field, a non-JSON body its text; either
    falls back to the reason phrase.
    """
    text = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        return text or response.reason_phrase or UNEXPECTED_ERROR
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return response.reason_phrase or UNEXPECTED_ERROR


class KonsiderClient:
    """Thin wrapper around `httpx.Client` that keeps the session cookie."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
        cookie: Optional[str] = None,
    ):
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)
        if cookie:
            self._http.cookies.set(COOKIE_NAME, cookie)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "KonsiderClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def fetch_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        download_dir: Optional[str] = None,
    ) -> ApiResponse:
        """Send one request and normalize the outcome."""
        kwargs = {}
        if body is not None:
            kwargs["json"] = body
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException:
            return ApiResponse.failure(408, "request timed-out")
        except httpx.HTTPError as exc:
            LOGGER.warning("request_transport_error %s", json.dumps({"path": path, "error": str(exc)}, ensure_ascii=True))
            return ApiResponse.failure(500, str(exc))

        if not response.is_success:
            return ApiResponse.failure(response.status_code, error_message(response))

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("application/pdf"):
            download = PdfDownload(
                filename=pdf_filename(response.headers.get("content-disposition")),
                content=response.content,
            )
            if download_dir:
                target = Path(download_dir) / Path(download.filename).name
                target.write_bytes(download.content)
            return ApiResponse(success=download)

        if not response.content.strip():
            return ApiResponse(success=response)

        try:
            return ApiResponse(success=response.json())
        except ValueError as exc:
            return ApiResponse.failure(500, f"invalid JSON response: {exc}")

    def fetch_all(self, requests: Sequence[tuple]) -> ApiResponse:
        """Run `(method, path[, body])` requests in parallel.

        All requests complete before returning; the first error in request
        order wins, otherwise `success` is the list of payloads.
        """
        if not requests:
            return ApiResponse(success=[])
        with ThreadPoolExecutor(max_workers=len(requests)) as pool:
            results = list(pool.map(lambda req: self.fetch_request(*req), requests))
        for result in results:
            if not result.ok:
                return result
        return ApiResponse(success=[result.success for result in results])

    def login(self, email: str, password: str) -> ApiResponse:
        return self.fetch_request("POST", "/api/v1/auth/login", {"email": email, "password": password})

    def logout(self) -> ApiResponse:
        return self.fetch_request("POST", "/api/v1/auth/logout")

    def check(self) -> ApiResponse:
        return self.fetch_request("GET", "/api/v1/auth/check")

    def list_resource(
        self,
        name: str,
        page: int = 1,
        per_page: int = 10,
        sort: Optional[str] = None,
        filter: Optional[str] = None,
    ) -> ApiResponse:
        params = {"page": page, "per_page": per_page}
        if sort:
            params["sort"] = sort
        if filter:
            params["filter"] = filter
        path = httpx.URL(f"/api/v1/{name}", params=params)
        return self.fetch_request("GET", str(path))
