from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from . import deps
from .cache import cache_leaderboard, get_cache, get_cached_leaderboard
from .errors import RiddleGameError, ValidationError
from .lifecycle import RiddleLifecycle
from .logging_utils import setup_logging, get_logger, request_id_ctx
from .scoring import ScoringEngine

import hmac
import logging
import os
import re
import time
import uuid


# Rate limiting - store last request times per IP
_RATE_LIMIT_STORE: dict = {}


def check_rate_limit(request: Request, scope: str, max_requests: int = 30, window_seconds: int = 60) -> bool:
    """
    Simple in-memory sliding-window rate limiting per client IP and route.
    Returns True if the request is allowed, False if rate limited.
    """
    client_ip = request.client.host if request.client else "unknown"
    key = f"{scope}:{client_ip}"
    current_time = time.time()
    cutoff_time = current_time - window_seconds
    recent = [t for t in _RATE_LIMIT_STORE.get(key, []) if t > cutoff_time]
    if len(recent) >= max_requests:
        _RATE_LIMIT_STORE[key] = recent
        return False
    recent.append(current_time)
    _RATE_LIMIT_STORE[key] = recent
    # forget clients with no request inside the window
    for stale in [k for k, times in list(_RATE_LIMIT_STORE.items()) if times[-1] <= cutoff_time]:
        _RATE_LIMIT_STORE.pop(stale, None)
    return True


def rate_limit_dependency(scope: str, max_requests: int = 30, window_seconds: int = 60):
    """Create a dependency function that raises HTTP 429 if rate limited"""
    def dependency(request: Request):
        if not check_rate_limit(request, scope, max_requests, window_seconds):
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds."
            )
    return dependency


setup_logging(logging.INFO)
logger = get_logger("riddleme")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if deps.repository is None:
        deps.configure()
    logger.info("startup_complete", extra={"provider": getattr(deps.provider, "name", None)})
    yield


app = FastAPI(title="RiddleMe", lifespan=lifespan)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        # JSON API only: nothing may be loaded or framed from these responses
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Cache-Control', 'no-store')
        return response


app.add_middleware(SecurityHeadersMiddleware)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        client = request.client.host if request.client else "-"
        ua = request.headers.get("user-agent", "-")
        response = None
        try:
            response = await call_next(request)
            return response
        except Exception:
            logger.exception(
                "request_error",
                extra={"path": str(request.url), "method": request.method},
            )
            raise
        finally:
            duration_ms = int((time.time() - start) * 1000)
            status = getattr(response, "status_code", 500)
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "duration_ms": duration_ms,
                    "client": client,
                    "user_agent": ua,
                },
            )
            if response is not None:
                response.headers["X-Request-ID"] = rid
            request_id_ctx.reset(token)


app.add_middleware(RequestLoggingMiddleware)

_DEFAULT_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8000,http://127.0.0.1:8000"

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", _DEFAULT_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Accept", "Content-Type", "X-Request-ID", "X-Admin-Token"],
)


_HTTP_ERROR_CODES = {
    400: "bad_request",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")} for e in exc.errors()]
    logger.warning("validation_error", extra={"method": request.method, "path": request.url.path, "errors": errors})
    message = errors[0]["msg"] if errors else "Input validation failed"
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": message, "detail": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": _HTTP_ERROR_CODES.get(exc.status_code, "http_error"), "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RiddleGameError)
async def game_error_handler(request: Request, exc: RiddleGameError):
    if exc.status_code >= 500 and exc.status_code != 503:
        logger.error("game_error", exc_info=exc, extra={"path": request.url.path, "error": exc.error})
    else:
        logger.warning("game_error", extra={"path": request.url.path, "status": exc.status_code, "error": exc.error})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


@app.get("/health", include_in_schema=False)
def health():
    return JSONResponse({"status": "ok"})


@app.get("/api/cache/stats", include_in_schema=False)
def cache_stats():
    return JSONResponse({"cache_stats": get_cache().get_stats(), "status": "ok"})


_USERNAME_RE = re.compile(r'^[\w .-]+$')


def _validate_username(v: Optional[str]) -> str:
    v = (v or "").strip()
    if len(v) == 0:
        raise ValueError('Username cannot be empty')
    if len(v) > 32:
        raise ValueError('Username too long (max 32 characters)')
    if not _USERNAME_RE.match(v):
        raise ValueError('Username can only contain letters, numbers, spaces, dots, underscore, and hyphen')
    return v


class AnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    answer: str = Field(..., max_length=200)
    riddle_id: int = Field(..., alias="riddleId")
    hints_used: Optional[int] = Field(0, alias="hintsUsed", ge=0, le=3)
    current_points: Optional[int] = Field(None, alias="currentPoints")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        return _validate_username(v)

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v):
        if not v.strip():
            raise ValueError('Answer cannot be empty')
        return v


class SkipRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    riddle_id: int = Field(..., alias="riddleId")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        return _validate_username(v)


def require_admin(request: Request):
    """When ADMIN_TOKEN is set, the caller must present it in X-Admin-Token."""
    expected = os.getenv("ADMIN_TOKEN")
    if not expected:
        return
    supplied = request.headers.get("X-Admin-Token", "")
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="invalid admin token")


@app.get("/api/riddle/current")
def current_riddle(lifecycle: RiddleLifecycle = Depends(deps.get_lifecycle)):
    return lifecycle.get_current()


@app.post("/api/riddle/answer")
def submit_answer(
    body: AnswerRequest,
    scoring: ScoringEngine = Depends(deps.get_scoring),
    _: None = Depends(rate_limit_dependency("answer", max_requests=30, window_seconds=60)),
):
    outcome = scoring.submit_answer(
        body.username,
        body.riddle_id,
        body.answer,
        hints_used=body.hints_used or 0,
        proposed_points=body.current_points,
    )
    return outcome.as_response()


@app.post("/api/riddle/skip")
def skip_riddle(
    body: SkipRequest,
    scoring: ScoringEngine = Depends(deps.get_scoring),
    _: None = Depends(rate_limit_dependency("skip", max_requests=10, window_seconds=60)),
):
    return scoring.skip(body.username, body.riddle_id)


@app.post("/api/riddle/regenerate")
def regenerate_riddle(
    lifecycle: RiddleLifecycle = Depends(deps.get_lifecycle),
    _admin: None = Depends(require_admin),
    _: None = Depends(rate_limit_dependency("regenerate", max_requests=5, window_seconds=60)),
):
    riddle = lifecycle.regenerate()
    logger.info("riddle_regenerated", extra={"riddle_id": riddle["id"]})
    return {"message": "New riddle generated", "riddle": riddle}


@app.get("/api/leaderboard")
def leaderboard(
    limit: int = 10,
    scoring: ScoringEngine = Depends(deps.get_scoring),
    _: None = Depends(rate_limit_dependency("leaderboard", max_requests=60, window_seconds=60)),
):
    if limit < 1 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")
    leaders = get_cached_leaderboard(limit)
    if leaders is None:
        leaders = scoring.get_leaderboard(limit)
        cache_leaderboard(limit, leaders)
    return leaders


@app.get("/api/player/{username}")
def player_summary(username: str, scoring: ScoringEngine = Depends(deps.get_scoring)):
    return scoring.player_summary(username)
