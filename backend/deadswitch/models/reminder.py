from typing import TYPE_CHECKING

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from deadswitch.models.message import Message


class Reminder(SQLModel, table=True):
    """Pre-trigger notification sent ``minutes_before`` the trigger instant."""

    id: int | None = Field(default=None, primary_key=True)
    message_id: str = Field(foreign_key="message.id", ondelete="CASCADE", index=True)
    minutes_before: int
    sent: bool = False

    message: "Message" = Relationship(back_populates="reminders")
