"""Authentication helpers and FastAPI security dependencies.

The session token travels in the `id` cookie set at login; an
`Authorization: Bearer` header is accepted as well for API clients.
`get_current_claims` validates the token against the shared
`token_cache` (falling back to the `user_token` table) and returns its
claims; `require_admin` additionally checks the role.
"""

from typing import Optional

from fastapi import Depends, Request, Response, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from .config import settings
from .database import get_session
from .errors import NotAuthenticatedError, PermissionDeniedError
from .schemas import TokenClaims
from .services import AuthService
from .utils.token_cache import TokenCache

COOKIE_NAME = "id"

bearer_scheme = HTTPBearer(auto_error=False)
token_cache = TokenCache()


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise NotAuthenticatedError("no session cookie or bearer token")
    return token


def get_current_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> TokenClaims:
    """FastAPI dependency that returns the claims of the caller's token.

    Raises `NotAuthenticatedError` (401) for a missing, malformed,
    expired or revoked token.
    """
    token = extract_token(request, credentials)
    claims = AuthService(session, token_cache).authenticate(token)
    request.state.user_id = str(claims.sub)
    return claims


def require_admin(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
    if not claims.is_admin:
        raise PermissionDeniedError(f"user {claims.sub} is not an admin")
    return claims


def set_session_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=max_age,
        path="/",
        domain=settings.COOKIE_DOMAIN or None,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "",
        max_age=0,
        path="/",
        domain=settings.COOKIE_DOMAIN or None,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="strict",
    )
