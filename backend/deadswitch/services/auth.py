"""Master password setup, verification and recovery."""

from sqlmodel import Session

from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError, UnauthorizedError
from deadswitch.core.logger import logger_config
from deadswitch.core.security import (
    generate_recovery_key,
    generate_token,
    get_password_hash,
    tokens_match,
    verify_password,
)
from deadswitch.models.settings import SETTINGS_ID, Settings
from deadswitch.services import repository
from deadswitch.utils.validation import validate_email_format, validate_password_strength

logger = logger_config.get_logger("auth")


def is_configured(session: Session) -> bool:
    if settings.MASTER_PASSWORD:
        return True
    return bool(repository.load_settings(session).master_password_hash)


def setup_master_password(session: Session, password: str, owner_email: str = "") -> str:
    """
    First-run setup. Returns the recovery key, which is shown exactly once.

    Also issues the service-wide heartbeat token used by quick check-ins.
    """
    if is_configured(session):
        raise InvalidInputError("Master password is already configured")

    validate_password_strength(password)
    email = validate_email_format(owner_email) if owner_email.strip() else ""

    recovery_key = generate_recovery_key()
    record = session.get(Settings, SETTINGS_ID) or Settings(id=SETTINGS_ID)
    record.master_password_hash = get_password_hash(password)
    record.recovery_key_hash = get_password_hash(recovery_key)
    record.owner_email = email
    record.heartbeat_token = generate_token()
    session.add(record)
    session.commit()

    logger.info("Master password configured")
    return recovery_key


def verify_master_password(session: Session, password: str) -> None:
    if not password:
        raise InvalidInputError("Master password is required")

    if settings.MASTER_PASSWORD:
        if not tokens_match(settings.MASTER_PASSWORD, password):
            raise UnauthorizedError("Invalid credentials")
        return

    stored = repository.load_settings(session).master_password_hash
    if not stored:
        raise UnauthorizedError("Master password not configured")
    if not verify_password(password, stored):
        raise UnauthorizedError("Invalid credentials")


def reset_master_password(session: Session, recovery_key: str, new_password: str) -> str:
    """Swap the master password using the recovery key; rotates the recovery key."""
    validate_password_strength(new_password)

    record = session.get(Settings, SETTINGS_ID)
    if not record or not record.recovery_key_hash:
        raise InvalidInputError("Recovery key not configured")
    if not verify_password(recovery_key.strip(), record.recovery_key_hash):
        raise UnauthorizedError("Invalid recovery key")

    new_recovery_key = generate_recovery_key()
    record.master_password_hash = get_password_hash(new_password)
    record.recovery_key_hash = get_password_hash(new_recovery_key)
    session.add(record)
    session.commit()

    logger.info("Master password reset with recovery key")
    return new_recovery_key


def heartbeat_token(session: Session) -> str:
    """The service-wide quick check-in token, created on first use."""
    record = session.get(Settings, SETTINGS_ID) or Settings(id=SETTINGS_ID)
    if not record.heartbeat_token:
        record.heartbeat_token = generate_token()
        session.add(record)
        session.commit()
    return record.heartbeat_token
