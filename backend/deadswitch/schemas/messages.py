from datetime import datetime

from pydantic import BaseModel, Field

from deadswitch.models.message import MessageRead, MessageStatus


class CreateMessageRequest(BaseModel):
    """Request to create a switch."""

    content: str = Field(..., min_length=1)
    recipient_email: str = Field(..., min_length=1, max_length=254)
    trigger_duration: int  # minutes
    reminders: list[int] = []  # minutes before trigger


class CreateMessageResponse(BaseModel):
    """Created switch plus its management token (only returned here)."""

    message: MessageRead
    management_token: str


class UpdateMessageRequest(BaseModel):
    """Partial update; content changes need the management token."""

    content: str | None = None
    management_token: str | None = None
    trigger_duration: int | None = None
    reminders: list[int] | None = None


class ManagementTokenRequest(BaseModel):
    """Token-based check-in, delete and content requests."""

    management_token: str = Field(..., min_length=1, max_length=128)


class CheckInResponse(BaseModel):
    """Minimal check-in acknowledgement for token holders."""

    id: str
    status: MessageStatus
    last_seen: datetime
    trigger_at: datetime


class ContentResponse(BaseModel):
    content: str


class QuickHeartbeatResponse(BaseModel):
    updated: int


class SweepReportResponse(BaseModel):
    """Outcome of an explicit redelivery."""

    delivered: int
    delivery_retries: int
    delivery_failed: int
    undecryptable: int
    errors: int


class HeartbeatTokenResponse(BaseModel):
    token: str
    url: str


class StatusResponse(BaseModel):
    message: str
