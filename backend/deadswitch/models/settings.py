from sqlmodel import Field, SQLModel

SETTINGS_ID = 1


class Settings(SQLModel, table=True):
    """Process-wide configuration, a single row. Secrets are sealed at rest."""

    id: int = Field(default=SETTINGS_ID, primary_key=True)

    smtp_host: str = ""
    smtp_port: str = ""
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = ""
    smtp_from_name: str = ""

    master_password_hash: str = ""
    recovery_key_hash: str = ""

    webhook_url: str = ""
    webhook_secret: str = ""
    webhook_enabled: bool = False

    owner_email: str = ""
    heartbeat_token: str = ""

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_port)


class SettingsRead(SQLModel):
    """Settings as returned to clients - every secret redacted."""

    smtp_host: str
    smtp_port: str
    smtp_user: str
    smtp_from: str
    smtp_from_name: str
    webhook_url: str
    webhook_enabled: bool
    owner_email: str
    smtp_pass_set: bool
    webhook_secret_set: bool

    @classmethod
    def from_settings(cls, record: Settings) -> "SettingsRead":
        return cls(
            smtp_host=record.smtp_host,
            smtp_port=record.smtp_port,
            smtp_user=record.smtp_user,
            smtp_from=record.smtp_from,
            smtp_from_name=record.smtp_from_name,
            webhook_url=record.webhook_url,
            webhook_enabled=record.webhook_enabled,
            owner_email=record.owner_email,
            smtp_pass_set=bool(record.smtp_pass),
            webhook_secret_set=bool(record.webhook_secret),
        )


class SettingsRequest(SQLModel):
    """Settings write schema - accepts secrets; blank secrets keep the stored ones."""

    smtp_host: str = ""
    smtp_port: str = ""
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = ""
    smtp_from_name: str = ""
    webhook_url: str = ""
    webhook_secret: str = ""
    webhook_enabled: bool = False
    owner_email: str = ""
