"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Konsider backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Failures are raised as `ApiError`
subclasses and rendered by the handlers in `errors`.

Endpoints implemented (all under /api/v1):
- GET /health
- POST /auth/login, POST /auth/logout, GET /auth/check
- DELETE /auth/revoke/{user_id}
- GET|POST /users, GET|PATCH|DELETE /users/{id}, POST /users/password
- GET|POST /software, PATCH|DELETE /software/{id}
- GET|POST /requesters, PATCH|DELETE /requesters/{id}
- GET|POST /requests, PATCH|DELETE /requests/{id}
- GET|POST /reviews, GET|PATCH|DELETE /reviews/{id}
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import repositories, schemas, services
from .auth import (
    clear_session_cookie,
    get_current_claims,
    require_admin,
    set_session_cookie,
    token_cache,
)
from .config import settings
from .database import create_db_and_tables, engine, get_session
from .errors import RateLimitedError, register_exception_handlers
from .utils.log_files import LogCleanupWorker, configure_file_logging
from .utils.query_params import ListQuery, QueryParams
from .utils.rate_limit import InMemoryRateLimiter
from .utils.token_cache import TokenCacheWorker

logger = logging.getLogger("konsider.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_login_rate_limiter = InMemoryRateLimiter()


def _refresh_token_cache():
    with Session(engine) as session:
        return services.live_tokens(session)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    workers = [TokenCacheWorker(token_cache, _refresh_token_cache, settings.TOKEN_POLL_SECONDS)]
    if settings.LOG_DIR:
        configure_file_logging(settings.LOG_DIR, settings.LOG_LEVEL)
        workers.append(LogCleanupWorker(settings.LOG_DIR, settings.LOG_RETENTION_DAYS))
    for worker in workers:
        worker.start()
    try:
        yield
    finally:
        for worker in workers:
            worker.stop()


app = FastAPI(title="Konsider API", lifespan=lifespan)
router = APIRouter(prefix="/api/v1")
register_exception_handlers(app)

# The browser frontend sends the session cookie, so origins must be explicit.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


def _enforce_login_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _login_rate_limiter.allow(key, settings.LOGIN_RATE_LIMIT_PER_MIN, 60)
    if not allowed:
        raise RateLimitedError(retry_after)


def _content_disposition(filename: str) -> str:
    try:
        filename.encode("latin-1")
        return f'attachment; filename="{filename}"'
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "ignore").decode("ascii").strip() or "review.pdf"
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _list_query(repository) -> ListQuery:
    return ListQuery(sort_fields=tuple(repository.sort_columns), filter_fields=tuple(repository.filter_columns))


users_query = _list_query(repositories.UserRepository)
software_query = _list_query(repositories.SoftwareRepository)
requesters_query = _list_query(repositories.RequesterRepository)
requests_query = _list_query(repositories.SoftwareRequestRepository)
reviews_query = _list_query(repositories.SoftwareReviewRepository)


@router.get("/health", status_code=204)
def health():
    return Response(status_code=204)


@router.post("/auth/login")
def login(payload: schemas.CredentialsIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user, set the session cookie and return their role."""
    _enforce_login_rate_limit(request)
    token, claims = services.AuthService(db, token_cache).login(payload.email, payload.password)
    response = JSONResponse({"role": claims.role.value})
    set_session_cookie(response, token, claims.exp - claims.iat)
    return response


@router.post("/auth/logout", status_code=204)
def logout(claims: schemas.TokenClaims = Depends(get_current_claims), db: Session = Depends(get_session)):
    services.AuthService(db, token_cache).logout(claims)
    response = Response(status_code=204)
    clear_session_cookie(response)
    return response


@router.get("/auth/check")
def check(claims: schemas.TokenClaims = Depends(get_current_claims)):
    return {"id": str(claims.sub), "role": claims.role.value}


@router.delete("/auth/revoke/{user_id}", status_code=204)
def revoke_user(user_id: uuid.UUID, _admin=Depends(require_admin), db: Session = Depends(get_session)):
    services.AuthService(db, token_cache).revoke_user(user_id)
    return Response(status_code=204)


@router.get("/users")
def list_users(_admin=Depends(require_admin), params: QueryParams = Depends(users_query), db: Session = Depends(get_session)):
    return services.UserService(db, token_cache).list(params)


@router.post("/users", status_code=201)
def create_user(payload: schemas.UserCreateIn, _admin=Depends(require_admin), db: Session = Depends(get_session)):
    return services.UserService(db, token_cache).create(payload)


@router.post("/users/password", status_code=204)
def change_password(
    payload: schemas.ChangePasswordIn,
    claims: schemas.TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    """Change the caller's password; the current session is ended."""
    services.AuthService(db, token_cache).change_password(claims, payload.current_password, payload.new_password)
    response = Response(status_code=204)
    clear_session_cookie(response)
    return response


@router.get("/users/{user_id}")
def get_user(user_id: uuid.UUID, _admin=Depends(require_admin), db: Session = Depends(get_session)):
    return services.UserService(db, token_cache).get(user_id)


@router.patch("/users/{user_id}", status_code=204)
def update_user(
    user_id: uuid.UUID,
    payload: schemas.UserUpdateIn,
    _admin=Depends(require_admin),
    db: Session = Depends(get_session),
):
    services.UserService(db, token_cache).update(user_id, payload)
    return Response(status_code=204)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: uuid.UUID, _admin=Depends(require_admin), db: Session = Depends(get_session)):
    services.UserService(db, token_cache).delete(user_id)
    return Response(status_code=204)


@router.get("/software")
def list_software(_claims=Depends(get_current_claims), params: QueryParams = Depends(software_query), db: Session = Depends(get_session)):
    return services.SoftwareService(db).list(params)


@router.post("/software", status_code=201)
def create_software(payload: schemas.SoftwareIn, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    return services.SoftwareService(db).create(payload)


@router.patch("/software/{software_id}", status_code=204)
def update_software(
    software_id: uuid.UUID,
    payload: schemas.SoftwareUpdateIn,
    _claims=Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    services.SoftwareService(db).update(software_id, payload)
    return Response(status_code=204)


@router.delete("/software/{software_id}", status_code=204)
def delete_software(software_id: uuid.UUID, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    services.SoftwareService(db).delete(software_id)
    return Response(status_code=204)


@router.get("/requesters")
def list_requesters(_claims=Depends(get_current_claims), params: QueryParams = Depends(requesters_query), db: Session = Depends(get_session)):
    return services.RequesterService(db).list(params)


@router.post("/requesters", status_code=201)
def create_requester(payload: schemas.RequesterIn, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    return services.RequesterService(db).create(payload)


@router.patch("/requesters/{requester_id}", status_code=204)
def update_requester(
    requester_id: uuid.UUID,
    payload: schemas.RequesterUpdateIn,
    _claims=Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    services.RequesterService(db).update(requester_id, payload)
    return Response(status_code=204)


@router.delete("/requesters/{requester_id}", status_code=204)
def delete_requester(requester_id: uuid.UUID, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    services.RequesterService(db).delete(requester_id)
    return Response(status_code=204)


@router.get("/requests")
def list_requests(_claims=Depends(get_current_claims), params: QueryParams = Depends(requests_query), db: Session = Depends(get_session)):
    return services.SoftwareRequestService(db).list(params)


@router.post("/requests", status_code=201)
def create_request(payload: schemas.SoftwareRequestIn, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    return services.SoftwareRequestService(db).create(payload)


@router.patch("/requests/{request_id}", status_code=204)
def update_request(
    request_id: uuid.UUID,
    payload: schemas.SoftwareRequestUpdateIn,
    _claims=Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    services.SoftwareRequestService(db).update(request_id, payload)
    return Response(status_code=204)


@router.delete("/requests/{request_id}", status_code=204)
def delete_request(request_id: uuid.UUID, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    services.SoftwareRequestService(db).delete(request_id)
    return Response(status_code=204)


@router.get("/reviews")
def list_reviews(_claims=Depends(get_current_claims), params: QueryParams = Depends(reviews_query), db: Session = Depends(get_session)):
    return services.SoftwareReviewService(db).list(params)


@router.post("/reviews", status_code=201)
def create_review(
    payload: schemas.SoftwareReviewIn,
    claims: schemas.TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    """Create the software, requester, request and review in one go."""
    return services.SoftwareReviewService(db).create(payload, reviewer_id=claims.sub)


@router.get("/reviews/{review_id}")
def export_review(review_id: uuid.UUID, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    """Download the review as a PDF and mark it exported."""
    filename, content = services.SoftwareReviewService(db).export_pdf(review_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.patch("/reviews/{review_id}", status_code=204)
def update_review(
    review_id: uuid.UUID,
    payload: schemas.SoftwareReviewUpdateIn,
    _claims=Depends(get_current_claims),
    db: Session = Depends(get_session),
):
    services.SoftwareReviewService(db).update(review_id, payload)
    return Response(status_code=204)


@router.delete("/reviews/{review_id}", status_code=204)
def delete_review(review_id: uuid.UUID, _claims=Depends(get_current_claims), db: Session = Depends(get_session)):
    services.SoftwareReviewService(db).delete(review_id)
    return Response(status_code=204)


app.include_router(router)
