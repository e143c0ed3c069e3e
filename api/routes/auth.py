"""
api/routes/auth.py -- Authentication workflow endpoints.

Routes (relative to Settings.base_route, default /auth):
  POST /register               -- create identity; 201
  POST /login                  -- password login; JWT in body or session cookie
  POST /logout                 -- destroy session / acknowledge JWT logout
  GET  /me                     -- current principal (requires auth)
  POST /send-verification-otp  -- mounted when EMAIL_VERIFICATION_ENABLED
  POST /verify-email           -- mounted when EMAIL_VERIFICATION_ENABLED
  POST /send-forgot-otp        -- mounted when FORGOT_PASSWORD_ENABLED
  POST /reset-password         -- mounted when FORGOT_PASSWORD_ENABLED

Security:
  [H2] /register and /login are rate-limited per client address with the
       window/max from Settings. The limiter wrapper rejects over-limit
       requests before the handler body runs, so a throttled request never
       touches the repository or fires a hook.
  [C1] AuthEngine.login provides timing equalization -- never inline
       get_by_email() + verify_password() here.
  [M5] Cache-Control: no-store on every login response, success or failure.

Handlers only translate HTTP <-> engine calls. All decisions live in
auth/workflows.py; AuthErrors propagate to the handlers in api/main.py.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter

from api.limiter import LOGIN_LIMIT_MESSAGE, REGISTER_LIMIT_MESSAGE, login_limit, register_limit
from api.models import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserOut,
    VerifyEmailRequest,
)
from api.responses import auth_error_response
from auth.context import AuthContext
from auth.dependencies import authenticate, try_authenticate
from auth.errors import AuthError
from auth.models import Principal
from core.config import AuthMode, Settings


def _ctx(request: Request) -> AuthContext:
    return request.app.state.auth


# ---------------------------------------------------------------------------
# Core workflow endpoints
# ---------------------------------------------------------------------------


async def register(request: Request, body: Optional[RegisterRequest] = None) -> RegisterResponse:
    """Register a new identity with the default or requested role."""
    body = body or RegisterRequest()
    identity = await _ctx(request).engine.register(body.email, body.password, body.role, request=request)
    return RegisterResponse(user=UserOut(**identity.public()))


async def login(request: Request, body: Optional[LoginRequest] = None) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same generic error for unknown email and wrong password
    ("invalid_credentials") to avoid leaking account existence.
    """
    ctx = _ctx(request)
    body = body or LoginRequest()
    try:
        result = await ctx.engine.login(body.email, body.password, request=request)
    except AuthError as exc:
        resp = auth_error_response(exc)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    if result.token is not None:
        payload = LoginResponse(
            user=UserOut(**result.user),
            message="Logged in via JWT.",
            mode=AuthMode.JWT.value,
            expires_in=result.expires_in,
            token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        )
    else:
        payload = LoginResponse(
            user=UserOut(**result.user),
            message="Logged in via session.",
            mode=AuthMode.SESSION.value,
            expires_in=result.expires_in,
        )
    resp = JSONResponse(status_code=200, content=payload.model_dump(exclude_none=True))
    if result.session_handle is not None:
        ctx.sessions.set_cookie(resp, result.session_handle)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


async def logout(request: Request) -> JSONResponse:
    """End the session. Public: a JWT client may call it without a token."""
    ctx = _ctx(request)
    principal = try_authenticate(request)
    handle = ctx.sessions.handle_from_request(request) if ctx.mode is AuthMode.SESSION else None
    message = await ctx.engine.logout(principal, handle, request=request)
    resp = JSONResponse(content=LogoutResponse(message=message).model_dump())
    if ctx.mode is AuthMode.SESSION:
        ctx.sessions.clear_cookie(resp)
    return resp


async def me(principal: Principal = Depends(authenticate)) -> MeResponse:
    """Return the resolved principal for the current request."""
    return MeResponse(id=principal.id, role=principal.role, claims=principal.claims)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


async def send_verification_otp(request: Request, body: Optional[EmailRequest] = None) -> MessageResponse:
    body = body or EmailRequest()
    message = await _ctx(request).engine.send_verification_otp(body.email, request=request)
    return MessageResponse(message=message)


async def verify_email(request: Request, body: Optional[VerifyEmailRequest] = None) -> MessageResponse:
    body = body or VerifyEmailRequest()
    message = await _ctx(request).engine.verify_email(body.email, body.otp, request=request)
    return MessageResponse(message=message)


# ---------------------------------------------------------------------------
# Forgot password
# ---------------------------------------------------------------------------


async def send_forgot_otp(request: Request, body: Optional[EmailRequest] = None) -> MessageResponse:
    body = body or EmailRequest()
    message = await _ctx(request).engine.send_forgot_otp(body.email, request=request)
    return MessageResponse(message=message)


async def reset_password(request: Request, body: Optional[ResetPasswordRequest] = None) -> MessageResponse:
    body = body or ResetPasswordRequest()
    message = await _ctx(request).engine.reset_password(body.email, body.otp, body.new_password, request=request)
    return MessageResponse(message=message)


# ---------------------------------------------------------------------------
# Router assembly
# ---------------------------------------------------------------------------


def build_router(settings: Settings, limiter: Limiter) -> APIRouter:
    """Assemble the auth router for one application.

    The rate-limited handlers are wrapped by this app's limiter and the
    wrappers are what get routed; slowapi checks the limit before the handler
    body runs. This module deliberately has no `from __future__ import
    annotations` so FastAPI can read the handler signatures through the
    wrappers.
    """
    limited_register = limiter.limit(register_limit(settings), error_message=REGISTER_LIMIT_MESSAGE)(register)
    limited_login = limiter.limit(login_limit(settings), error_message=LOGIN_LIMIT_MESSAGE)(login)

    router = APIRouter()
    router.add_api_route(
        "/register", limited_register, methods=["POST"], status_code=201, response_model=RegisterResponse
    )
    router.add_api_route("/login", limited_login, methods=["POST"], response_model=LoginResponse)
    router.add_api_route("/logout", logout, methods=["POST"], response_model=LogoutResponse)
    router.add_api_route("/me", me, methods=["GET"], response_model=MeResponse)

    if settings.email_verification_enabled:
        router.add_api_route(
            "/send-verification-otp", send_verification_otp, methods=["POST"], response_model=MessageResponse
        )
        router.add_api_route("/verify-email", verify_email, methods=["POST"], response_model=MessageResponse)

    if settings.forgot_password_enabled:
        router.add_api_route("/send-forgot-otp", send_forgot_otp, methods=["POST"], response_model=MessageResponse)
        router.add_api_route("/reset-password", reset_password, methods=["POST"], response_model=MessageResponse)

    return router
