import pytest

from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError, UnauthorizedError
from deadswitch.models.settings import SETTINGS_ID, Settings
from deadswitch.services.auth import (
    heartbeat_token,
    is_configured,
    reset_master_password,
    setup_master_password,
    verify_master_password,
)

STRONG = "Correct-Horse-Battery-9-Staple"
OTHER = "Violet+Lantern+Orbit+42+Quay"


def test_setup_then_login(session, fresh):
    assert not is_configured(session)

    recovery_key = setup_master_password(session, STRONG, "owner@example.com")

    assert recovery_key.startswith("RK-")
    assert is_configured(session)
    verify_master_password(session, STRONG)
    stored = fresh(Settings, SETTINGS_ID)
    assert stored.master_password_hash.startswith("$argon2id$")
    assert stored.owner_email == "owner@example.com"
    assert stored.heartbeat_token


def test_setup_only_once(session):
    setup_master_password(session, STRONG)

    with pytest.raises(InvalidInputError, match="already"):
        setup_master_password(session, OTHER)


@pytest.mark.parametrize("password", ["Sh0rt!", "alllowercase-and-long-1", "Password123!"])
def test_weak_passwords_rejected(session, password):
    with pytest.raises(InvalidInputError):
        setup_master_password(session, password)
    assert not is_configured(session)


def test_wrong_password(session):
    setup_master_password(session, STRONG)

    with pytest.raises(UnauthorizedError):
        verify_master_password(session, OTHER)


def test_login_before_setup(session):
    with pytest.raises(UnauthorizedError, match="not configured"):
        verify_master_password(session, STRONG)


def test_recovery_resets_password_and_rotates_key(session):
    recovery_key = setup_master_password(session, STRONG)

    new_key = reset_master_password(session, recovery_key, OTHER)

    assert new_key != recovery_key
    verify_master_password(session, OTHER)
    with pytest.raises(UnauthorizedError):
        verify_master_password(session, STRONG)
    with pytest.raises(UnauthorizedError):
        reset_master_password(session, recovery_key, STRONG)


def test_environment_password_overrides_stored_hash(session, monkeypatch):
    monkeypatch.setattr(settings, "MASTER_PASSWORD", "from-env")

    assert is_configured(session)
    verify_master_password(session, "from-env")
    with pytest.raises(UnauthorizedError):
        verify_master_password(session, "guess")


def test_heartbeat_token_created_once(session):
    first = heartbeat_token(session)

    assert first
    assert heartbeat_token(session) == first
