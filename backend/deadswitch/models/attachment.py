from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

from deadswitch.models.message import Lifecycle, new_id


class AttachmentBase(SQLModel):
    """Base attachment fields."""

    filename: str
    size: int
    mime_type: str


class Attachment(AttachmentBase, table=True):
    """Attachment database model. Bytes live in storage, not here."""

    id: str = Field(default_factory=new_id, primary_key=True)
    message_id: str = Field(foreign_key="message.id", ondelete="CASCADE", index=True)
    storage_location: str
    lifecycle: Lifecycle = Field(default=Lifecycle.ACTIVE)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AttachmentRead(AttachmentBase):
    """Attachment read schema."""

    id: str
    message_id: str
    created_at: datetime
