from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Webhook(SQLModel, table=True):
    """Additional signed callback target for trigger events."""

    id: int | None = Field(default=None, primary_key=True)
    url: str
    secret: str = ""  # sealed at rest
    enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class WebhookCreate(SQLModel):
    url: str
    secret: str = ""
    enabled: bool = True


class WebhookRead(SQLModel):
    id: int
    url: str
    enabled: bool
    created_at: datetime
    updated_at: datetime
