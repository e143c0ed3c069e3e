"""
API request and response models for the LightAuth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request fields are optional at this layer: the workflow engine owns input
validation so that missing or malformed values come back as 400 "invalid"
with a specific message, not as a generic 422. Length caps stay here so
oversized bodies never reach bcrypt.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST {base}/register. role falls back to DEFAULT_ROLE."""

    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=128)
    role: Optional[str] = Field(default=None, max_length=30)


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=128)


class EmailRequest(BaseModel):
    """Request body for send-verification-otp and send-forgot-otp."""

    email: Optional[str] = Field(default=None, max_length=254)


class VerifyEmailRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254)
    otp: Optional[str] = Field(default=None, max_length=64)


class ResetPasswordRequest(BaseModel):
    """Request body for POST {base}/reset-password.

    Accepts newPassword (wire name) or new_password.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = Field(default=None, max_length=254)
    otp: Optional[str] = Field(default=None, max_length=64)
    new_password: Optional[str] = Field(default=None, alias="newPassword", max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public identity fields. Never includes the hash or any code."""

    model_config = ConfigDict(extra="allow")

    id: Any
    email: str
    role: str


class RegisterResponse(BaseModel):
    user: UserOut
    message: str = "Registration successful."


class LoginResponse(BaseModel):
    """Login outcome. token is set in jwt mode; session mode uses the cookie."""

    user: UserOut
    message: str
    mode: str
    expires_in: int
    token: Optional[str] = None
    token_type: Optional[str] = None


class LogoutResponse(BaseModel):
    message: str
    user: None = None


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    id: Any
    role: str
    claims: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    mode: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
