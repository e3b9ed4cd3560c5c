"""
API request and response models for the marketplace auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (refreshToken, accessTokenExpires, ...); Python
attributes stay snake_case via the shared alias generator.

Request fields the service must report with its own message when missing
(login email/password, refreshToken, forgot-password email, ...) are Optional
here on purpose -- a missing field reaches the service and gets the stable
400 message instead of a generic validation error.
"""

from datetime import datetime
from typing import Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Account

SelfAssignableRole = Literal["user", "talent"]

_camel = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register.

    Only name and email are trimmed; the password is taken byte for byte so
    that login, which never trims, sees the same string. The email is checked
    for shape but kept as typed (no domain lowercasing), matching how login
    and forgot-password look it up.
    """

    model_config = _camel

    name: str = Field(min_length=1, max_length=50)
    email: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)
    role: Optional[SelfAssignableRole] = None

    trim = field_validator("name", "email", mode="before")(_strip)

    @field_validator("email")
    @classmethod
    def check_email_shape(cls, value: str) -> str:
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError("value is not a valid email address") from exc
        return value


class LoginRequest(BaseModel):
    """Request body for POST /auth/login.

    No email format check: a malformed address must fail exactly like an
    unknown one.
    """

    model_config = _camel

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)

    trim = field_validator("email", mode="before")(_strip)


class GoogleAuthRequest(BaseModel):
    """Request body for POST /auth/google. token is the Google id_token."""

    model_config = _camel

    token: Optional[str] = None
    role: Optional[SelfAssignableRole] = None


class RefreshRequest(BaseModel):
    model_config = _camel

    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    """Optional body for POST /auth/logout. A refresh token sent here is revoked too."""

    model_config = _camel

    refresh_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    model_config = _camel

    email: Optional[str] = Field(default=None, max_length=255)

    trim = field_validator("email", mode="before")(_strip)


class ResetPasswordRequest(BaseModel):
    model_config = _camel

    password: Optional[str] = Field(default=None, min_length=8, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    """Sanitized account: no password hash, refresh-token or reset-token fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    email: str
    role: str
    google_id: Optional[str] = None
    picture: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> "UserView":
        return cls(**account.public_view())


class AuthResponse(BaseModel):
    """Response for register, login and Google login."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool = True
    token: str
    refresh_token: str
    access_token_expires: datetime
    refresh_token_expires: datetime
    user: UserView


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: UserView


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    token: str
    expires: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    errors: Optional[list[str]] = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    environment: str
