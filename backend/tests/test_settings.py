import pytest

from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError, NotFoundError
from deadswitch.models.settings import SETTINGS_ID, Settings, SettingsRead, SettingsRequest
from deadswitch.models.webhook import WebhookCreate
from deadswitch.services import settings as settings_service
from deadswitch.services.codec import SEALED_PREFIX
from deadswitch.services.webhooks import validate_webhook_url


def settings_request(**overrides):
    values = dict(
        smtp_host="smtp.example.com",
        smtp_port="587",
        smtp_user="mailer",
        smtp_pass="smtp-secret",
        smtp_from="noreply@example.com",
        webhook_url="https://hooks.example.com/x",
        webhook_secret="hook-secret",
        webhook_enabled=True,
        owner_email="owner@example.com",
    )
    values.update(overrides)
    return SettingsRequest(**values)


def test_secrets_are_sealed_at_rest(session, codec, fresh):
    settings_service.save_settings(session, codec, settings_request())

    stored = fresh(Settings, SETTINGS_ID)
    assert stored.smtp_pass.startswith(SEALED_PREFIX)
    assert stored.webhook_secret.startswith(SEALED_PREFIX)
    assert "smtp-secret" not in stored.smtp_pass

    runtime = settings_service.runtime_settings(session, codec)
    assert runtime.smtp_pass == "smtp-secret"
    assert runtime.webhook_secret == "hook-secret"


def test_blank_secret_keeps_stored_value(session, codec):
    settings_service.save_settings(session, codec, settings_request())
    settings_service.save_settings(
        session, codec, settings_request(smtp_pass="", webhook_secret="", smtp_host="mail.example.com")
    )

    runtime = settings_service.runtime_settings(session, codec)
    assert runtime.smtp_host == "mail.example.com"
    assert runtime.smtp_pass == "smtp-secret"
    assert runtime.webhook_secret == "hook-secret"


def test_runtime_snapshot_does_not_leak_into_the_row(session, codec, fresh):
    settings_service.save_settings(session, codec, settings_request())

    settings_service.runtime_settings(session, codec)
    session.commit()

    assert fresh(Settings, SETTINGS_ID).smtp_pass.startswith(SEALED_PREFIX)


def test_read_schema_redacts_secrets(session, codec):
    record = settings_service.save_settings(session, codec, settings_request())

    read = SettingsRead.from_settings(record).model_dump()

    assert "smtp_pass" not in read
    assert "webhook_secret" not in read
    assert read["smtp_pass_set"] and read["webhook_secret_set"]


def test_enabled_webhook_needs_url(session, codec):
    with pytest.raises(InvalidInputError, match="required"):
        settings_service.save_settings(session, codec, settings_request(webhook_url=""))

    record = settings_service.save_settings(
        session, codec, settings_request(webhook_url="", webhook_enabled=False)
    )
    assert record.webhook_url == ""


def test_owner_email_is_validated(session, codec):
    with pytest.raises(InvalidInputError):
        settings_service.save_settings(session, codec, settings_request(owner_email="nope"))


@pytest.mark.parametrize(
    "url",
    [
        "http://hooks.example.com/x",
        "https://user:pw@hooks.example.com/x",
        "https://hooks.example.com/x#frag",
        "https://localhost/x",
        "https://printer.local/x",
        "https://127.0.0.1/x",
        "https://10.0.0.5/x",
        "https://169.254.169.254/latest",
        "not a url",
    ],
)
def test_webhook_url_rejected(url):
    with pytest.raises(InvalidInputError):
        validate_webhook_url(url)


def test_webhook_allowlist(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_ALLOWLIST_HOSTS", "hooks.example.com, .trusted.io")

    assert validate_webhook_url("https://hooks.example.com/a")
    assert validate_webhook_url("https://api.trusted.io/a")
    with pytest.raises(InvalidInputError, match="allowlisted"):
        validate_webhook_url("https://evil.example.net/a")


def test_webhook_store_crud(session, codec):
    created = settings_service.create_webhook(
        session, codec, WebhookCreate(url="https://a.example.com/hook", secret="s1")
    )
    assert created.secret.startswith(SEALED_PREFIX)
    assert [w.id for w in settings_service.list_webhooks(session)] == [created.id]

    [target] = settings_service.enabled_webhook_targets(session, codec)
    assert target.secret == "s1"
    assert target.label == f"webhook:{created.id}"

    updated = settings_service.update_webhook(
        session,
        codec,
        created.id,
        WebhookCreate(url="https://b.example.com/hook", secret="", enabled=False),
    )
    assert updated.url == "https://b.example.com/hook"
    assert codec.open_text(updated.secret) == "s1"
    assert settings_service.enabled_webhook_targets(session, codec) == []

    settings_service.delete_webhook(session, created.id)
    with pytest.raises(NotFoundError):
        settings_service.get_webhook(session, created.id)


def test_smtp_test_uses_stored_password_when_blank(session, codec, mailer):
    settings_service.save_settings(session, codec, settings_request())

    settings_service.test_smtp(session, codec, mailer, settings_request(smtp_pass=""))

    assert mailer.tested.smtp_pass == "smtp-secret"
    assert mailer.tested.smtp_host == "smtp.example.com"
