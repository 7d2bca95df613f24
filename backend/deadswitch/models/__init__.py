from deadswitch.models.attachment import Attachment, AttachmentRead
from deadswitch.models.message import (
    DeliveryStatus,
    Lifecycle,
    Message,
    MessageRead,
    MessageStatus,
    ReminderRead,
)
from deadswitch.models.reminder import Reminder
from deadswitch.models.settings import Settings, SettingsRead, SettingsRequest
from deadswitch.models.webhook import Webhook, WebhookCreate, WebhookRead

__all__ = [
    "Attachment",
    "AttachmentRead",
    "DeliveryStatus",
    "Lifecycle",
    "Message",
    "MessageRead",
    "MessageStatus",
    "Reminder",
    "ReminderRead",
    "Settings",
    "SettingsRead",
    "SettingsRequest",
    "Webhook",
    "WebhookCreate",
    "WebhookRead",
]
