from datetime import datetime

from pydantic import BaseModel, Field


class SetupStatusResponse(BaseModel):
    """Whether the master password has been configured."""

    configured: bool


class SetupRequest(BaseModel):
    """First-run setup request schema."""

    password: str = Field(..., min_length=1, max_length=500)
    owner_email: str = Field(default="", max_length=254)
    website: str = Field(default="")  # Honeypot field - should always be empty


class RecoveryKeyResponse(BaseModel):
    """Recovery key, shown exactly once."""

    recovery_key: str


class LoginRequest(BaseModel):
    """Login request schema."""

    password: str = Field(..., min_length=1, max_length=500)
    website: str = Field(default="")  # Honeypot field - should always be empty


class LoginResponse(BaseModel):
    """Login response schema."""

    csrf_token: str
    expires_at: datetime


class SessionResponse(BaseModel):
    """Current owner session."""

    authenticated: bool
    csrf_token: str | None = None
    expires_at: datetime | None = None


class RecoverRequest(BaseModel):
    """Master password reset with the recovery key."""

    recovery_key: str = Field(..., min_length=1, max_length=64)
    new_password: str = Field(..., min_length=1, max_length=500)


class LogoutResponse(BaseModel):
    """Logout response schema."""

    message: str
