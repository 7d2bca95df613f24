import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from deadswitch.models.reminder import Reminder


class MessageStatus(str, Enum):
    ACTIVE = "active"
    TRIGGERED = "triggered"


class Lifecycle(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNDECRYPTABLE = "undecryptable"


def new_id() -> str:
    return str(uuid.uuid4())


class Message(SQLModel, table=True):
    """
    A dead man's switch.

    Content is encrypted with a per-switch data key that is never stored;
    key_fragment holds XOR shares of it that need the management token or
    the escrow key to recombine.
    """

    id: str = Field(default_factory=new_id, primary_key=True)
    content: str
    key_fragment: str
    management_token_hash: str = Field(unique=True, index=True)

    recipient_email: str = Field(max_length=254)
    trigger_duration: int  # minutes
    last_seen: datetime = Field(default_factory=lambda: datetime.now(UTC))

    status: MessageStatus = Field(default=MessageStatus.ACTIVE, index=True)
    lifecycle: Lifecycle = Field(default=Lifecycle.ACTIVE, index=True)
    revision: int = 0

    # Delivery confirmation, tracked separately from status
    delivery: DeliveryStatus = Field(default=DeliveryStatus.PENDING)
    email_delivered: bool = False
    webhook_delivered: bool = False
    # Webhook URLs that acknowledged the release; never posted again
    webhooks_delivered: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    delivery_attempts: int = 0
    last_error: str | None = None
    triggered_at: datetime | None = None
    delivered_at: datetime | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    reminders: list["Reminder"] = Relationship(
        back_populates="message",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "Reminder.minutes_before.desc()",
        },
    )

    @property
    def is_active(self) -> bool:
        return (
            self.status == MessageStatus.ACTIVE
            and self.lifecycle == Lifecycle.ACTIVE
        )


class ReminderRead(SQLModel):
    id: int
    minutes_before: int
    sent: bool


class MessageRead(SQLModel):
    """Message read schema - never includes ciphertext or key material."""

    id: str
    recipient_email: str
    trigger_duration: int
    last_seen: datetime
    status: MessageStatus
    delivery: DeliveryStatus
    email_delivered: bool
    webhook_delivered: bool
    webhooks_delivered: list[str] = []
    delivery_attempts: int
    last_error: str | None
    triggered_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime
    updated_at: datetime
    reminders: list[ReminderRead] = []
    attachment_count: int = 0
