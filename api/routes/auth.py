"""
api/routes/auth.py -- Registration, verification and session endpoints.

Routes:
  POST /register       -- create an unverified account; emails a code
  POST /verify         -- consume a code; marks the account verified
  POST /resend-code    -- email a fresh code (earlier codes stay valid)
  POST /login          -- password login; returns JWT + sets cookie
  POST /logout         -- clears the cookie

Handlers are thin: validate the body (Pydantic), call AuthService, shape the
response. Failures are AuthError subclasses raised by the service and
translated to status codes by the single handler in api/main.py.

Handlers are plain `def` so FastAPI runs them in its thread pool -- bcrypt,
SQLAlchemy and SMTP calls block.

Security:
  [H2] POST /login and POST /resend-code are rate-limited per client IP.
       The limit strings are read from settings on every request.
  [C1] Login goes through AuthService.login(), which uses the timing-
       equalized authenticate_user().
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MessageResponse, RegisterRequest, ResendCodeRequest, VerifyRequest
from auth.dependencies import get_auth_service
from auth.models import VerifyOutcome
from auth.service import AuthService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _resend_limit() -> str:
    return get_settings().resend_rate_limit


# Auth policy: every route in this module is public.
router = APIRouter()


@router.post("/register", response_model=MessageResponse)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Register a new account. The response never contains the code or the hash."""
    service.register(body.name, body.email, body.password)
    return MessageResponse(
        message="User registered successfully, Please check your email for the validation code.",
    )


@router.post("/verify", response_model=MessageResponse)
def verify(body: VerifyRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Verify an email address with the code that was sent to it.

    Idempotent once the account is verified: repeating the call returns 200.
    """
    outcome = service.verify_email(body.email, body.code)
    if outcome is VerifyOutcome.verified:
        return MessageResponse(message="Email verified successfully")
    return MessageResponse(message="Email already verified")


@limiter.limit(_resend_limit)  # [H2] mail-bombing mitigation
@router.post("/resend-code", response_model=MessageResponse)
def resend_code(
    request: Request,
    body: ResendCodeRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a fresh verification code. No-op with 200 for verified accounts."""
    if service.resend_code(body.email):
        return MessageResponse(message="Validation code sent. Please check your email.")
    return MessageResponse(message="Email already verified")


@limiter.limit(_login_limit)  # [H2] brute-force mitigation -- must be ABOVE @router
@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    The token is returned in the body for API clients and also set as an
    httpOnly cookie for the browser front end. Unknown email and wrong
    password produce the same 401 body [C1].
    """
    session = service.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            message="Login successfully",
            token=session.token,
            expires_in=session.expires_in,
        ).model_dump(),
    )
    set_auth_cookie(resp, session.token, session.expires_in, secure=service.settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear the session cookie.

    Tokens are stateless, so a copy held elsewhere stays valid until it expires.
    """
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp)
    return resp
