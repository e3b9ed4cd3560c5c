"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes (mounted under API_PREFIX, default /api):
  POST /auth/register               -- create account, returns token pair (201)
  POST /auth/login                  -- email/password login, returns token pair
  POST /auth/google                 -- Google id_token login, returns token pair
  GET  /auth/me                     -- current account (requires auth)
  POST /auth/logout                 -- revoke token(s) (requires auth)
  POST /auth/refresh-token          -- new access token from a refresh token
  POST /auth/forgot-password        -- email a reset link
  PUT  /auth/reset-password/{token} -- set a new password with a reset token

Security:
  [H2] POST /login and /forgot-password are rate-limited per client IP.
  [C1] Login and forgot-password answers do not reveal whether an email exists.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain `def`: AuthService does blocking DB and bcrypt work, so
FastAPI runs them on its thread pool instead of the event loop.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    GoogleAuthRequest,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserView,
)
from auth.dependencies import get_auth_service, get_current_session
from auth.models import AuthResult, Session
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/register, /login, /google, /refresh-token, /forgot-password: public
# - PUT  /auth/reset-password/{token}: public -- the token is the credential
# - GET  /auth/me, POST /auth/logout: requires a bearer access token
router = APIRouter(prefix="/auth")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _json(model: BaseModel, status_code: int = 200, no_store: bool = False) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(mode="json", by_alias=True))
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _token_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    return _json(
        AuthResponse(
            token=result.access.token,
            refresh_token=result.refresh.token,
            access_token_expires=result.access.expires_at,
            refresh_token_expires=result.refresh.expires_at,
            user=UserView.from_account(result.account),
        ),
        status_code=status_code,
        no_store=True,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Create a user or talent account and log it in."""
    result = service.register(body.name, body.email, body.password, body.role)
    return _token_response(result, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=AuthResponse)
def login(
    request: Request,
    body: Optional[LoginRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body [C1].
    """
    body = body or LoginRequest()
    result = service.login(body.email or "", body.password or "")
    return _token_response(result)


@router.post("/google", response_model=AuthResponse)
def google_login(body: GoogleAuthRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Log in (or sign up) with a Google id_token obtained by the client."""
    result = service.federated_login(body.token or "", body.role)
    return _token_response(result)


@router.post("/refresh-token", response_model=RefreshResponse)
def refresh_token(
    body: Optional[RefreshRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange a refresh token for a fresh access token."""
    issued = service.refresh(body.refresh_token if body else None)
    return _json(RefreshResponse(token=issued.token, expires=issued.expires_at), no_store=True)


@limiter.limit(_settings.forgot_password_rate_limit)  # [H2]
@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    body: Optional[ForgotPasswordRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Send a password reset email. The reply never says whether the account exists [C1]."""
    message = service.forgot_password(body.email if body else None)
    return _json(MessageResponse(message=message))


@router.put("/reset-password/{token}", response_model=MessageResponse)
def reset_password(
    token: str,
    body: Optional[ResetPasswordRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Set a new password using the token from the reset email. Single use."""
    message = service.reset_password(token, body.password if body else None)
    return _json(MessageResponse(message=message))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=MeResponse)
def me(
    session: Session = Depends(get_current_session),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Return the account behind the bearer token."""
    account = service.get_current_account(session.subject_id)
    return _json(MeResponse(data=UserView.from_account(account)))


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    session: Session = Depends(get_current_session),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the presented access token (and refresh token, if sent) and end the session."""
    service.logout(session.token, session.account, body.refresh_token if body else None)
    return _json(MessageResponse(message="Logged out successfully"))
