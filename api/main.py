"""
api/main.py -- FastAPI application factory for LightAuth.

Run with:  uvicorn asgi:app --reload

create_app() builds one fully wired application per call. Everything that
would otherwise be module state (limiter, session wiring, repository) hangs
off that app, so tests can build as many differently configured apps as they
need side by side.

Middleware stack (registration order; Starlette runs the last one registered
outermost, so request logging sees every response including rejections):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- default limits; route limits live on the routes
  4. session loader        -- session mode only, installed once per app
  5. request logging
  6. security headers      -- nosniff, frame denial, referrer policy

Lifespan purges expired sessions on startup and then every
SESSION_PURGE_INTERVAL_SECONDS, and closes the stores the factory opened on
shutdown. Injected collaborators are owned by the caller and left open.

A failure while assembling collaborators fires on_error(type="setup") before
the exception propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import build_limiter
from api.models import HealthResponse
from api.responses import auth_error_response, error_response
from api.routes.auth import build_router
from auth.context import AuthContext
from auth.errors import AuthError, RateLimited
from auth.hooks import AuthHooks, report_setup_error
from auth.sessions import MemorySessionStore, SessionManager, SessionStore, SQLSessionStore
from auth.store import IdentityRepository, IdentityStore
from auth.tokens import TokenIssuer
from auth.workflows import AuthEngine
from core.config import AuthMode, Settings, get_settings
from mail.sender import Mailer, build_mailer

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lightauth.api")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "X-Permitted-Cross-Domain-Policies": "none",
}

DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


def _build_session_store(settings: Settings) -> SessionStore:
    if settings.session_store == "sql":
        return SQLSessionStore(settings.database_url)
    if settings.session_store != "memory":
        raise ValueError(f"Unknown SESSION_STORE {settings.session_store!r} (expected 'memory' or 'sql')")
    if not settings.debug:
        logger.warning("In-memory session store: sessions are per-process and lost on restart")
    return MemorySessionStore()


def _build_context(
    settings: Settings,
    repository: IdentityRepository | None,
    hooks: AuthHooks,
    mailer: Mailer | None,
    session_store: SessionStore | None,
    owned: list,
) -> AuthContext:
    """Build every collaborator the routes need. Opened stores go on `owned`."""
    if repository is None:
        repository = IdentityStore(settings.database_url)
        owned.append(repository)
    if mailer is None:
        mailer = build_mailer(settings)

    tokens = TokenIssuer(settings.secret_key, ttl_seconds=settings.token_expire_seconds)
    sessions: SessionManager | None = None
    if settings.auth_mode is AuthMode.SESSION:
        if session_store is None:
            session_store = _build_session_store(settings)
            if isinstance(session_store, SQLSessionStore):
                owned.append(session_store)
        sessions = SessionManager(
            session_store,
            settings.secret_key,
            ttl_seconds=settings.session_ttl_seconds,
            cookie_name=settings.session_cookie_name,
            secure_cookies=settings.secure_cookies,
        )

    engine = AuthEngine(settings, repository, tokens=tokens, sessions=sessions, mailer=mailer, hooks=hooks)
    return AuthContext(
        settings=settings,
        repository=repository,
        engine=engine,
        tokens=tokens,
        sessions=sessions,
        hooks=hooks,
    )


# ---------------------------------------------------------------------------
# Session purge
# ---------------------------------------------------------------------------


async def _purge_sessions(sessions: SessionManager) -> int:
    try:
        removed = await run_in_threadpool(sessions.purge_expired)
    except Exception:
        logger.exception("Session purge failed")
        return 0
    if removed:
        logger.info("Purged %d expired sessions", removed)
    return removed


async def _purge_loop(sessions: SessionManager, interval: float) -> None:
    """Purge expired sessions every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        await _purge_sessions(sessions)


def create_app(
    settings: Settings | None = None,
    *,
    repository: IdentityRepository | None = None,
    hooks: AuthHooks | None = None,
    mailer: Mailer | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Build a LightAuth application.

    Every argument is optional. Omitted collaborators are built from
    settings: an IdentityStore on DATABASE_URL, SMTP or logging mail
    delivery, and a memory or SQL session store in session mode.
    """
    hooks = hooks or AuthHooks()
    owned: list = []
    try:
        settings = settings or get_settings()
        context = _build_context(settings, repository, hooks, mailer, session_store, owned)
    except Exception as exc:
        logger.error("LightAuth setup failed: %s", exc)
        report_setup_error(hooks, exc)
        for resource in owned:
            resource.close()
        raise
    sessions = context.sessions

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("LightAuth API starting up")
        purge_task = None
        if sessions is not None:
            await _purge_sessions(sessions)
            if settings.session_purge_interval_seconds:
                purge_task = asyncio.create_task(_purge_loop(sessions, settings.session_purge_interval_seconds))

        yield

        if purge_task is not None:
            purge_task.cancel()
        for resource in owned:
            resource.close()
        logger.info("LightAuth API shutdown complete")

    app = FastAPI(
        title="LightAuth",
        description="Email and password authentication with JWT or server-side sessions.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.auth = context

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    # SlowAPI looks for app.state.limiter by convention.
    limiter = build_limiter(settings)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    if sessions is not None:
        sessions.install(app, context)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    app.include_router(build_router(settings, limiter), prefix=settings.base_route, tags=["Auth"])

    @app.get("/health", tags=["Health"])
    async def health() -> HealthResponse:
        """Liveness probe. Never rate-limited."""
        return HealthResponse(version=__version__, mode=settings.auth_mode.value)

    # ------------------------------------------------------------------
    # Exception handlers
    #
    # Every failure leaves in the same {"error": {...}} envelope.
    # ------------------------------------------------------------------

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        return auth_error_response(exc)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """429 with Retry-After set to the length of the exceeded window.

        The message is the route's own (e.g. "Too many login attempts.") when
        the limit carries one.
        """
        limit = getattr(exc, "limit", None)
        retry_after = limit.limit.get_expiry() if limit is not None else 60
        message = exc.detail if limit is not None and limit.error_message else DEFAULT_RATE_LIMIT_MESSAGE
        logger.warning(
            "Rate limit exceeded on %s from %s",
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        response = auth_error_response(RateLimited(message))
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all. The traceback goes to the log, never to the client."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return error_response(500, "internal_error", "An unexpected error occurred.")

    logger.info(
        "LightAuth configured: mode=%s base_route=%s roles=%s verification=%s forgot_password=%s",
        settings.auth_mode.value,
        settings.base_route,
        ",".join(settings.roles),
        settings.email_verification_enabled,
        settings.forgot_password_enabled,
    )
    return app
