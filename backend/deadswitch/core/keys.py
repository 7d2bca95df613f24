"""Escrow key loading.

The escrow key is the externally held second factor that lets the sweep
decrypt a switch when its owner is gone. It must never live in the database,
so it is read from (in priority order) the ``ESCROW_KEY`` environment
variable, a Docker secret, or a key file restricted to mode 0600.
"""

import base64
import binascii
import os
import secrets
import stat
from pathlib import Path

from deadswitch.core.config import settings
from deadswitch.core.errors import ConfigurationError
from deadswitch.core.logger import logger

ESCROW_KEY_BYTES = 32


def validate_key_format(encoded: str) -> bytes:
    """Decode a base64 key and check it is 32 bytes long."""
    if not encoded:
        raise ConfigurationError("Escrow key is empty")
    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("Escrow key is not valid base64", cause=exc)
    if len(decoded) != ESCROW_KEY_BYTES:
        raise ConfigurationError(
            f"Escrow key length is {len(decoded)} bytes "
            f"(must be {ESCROW_KEY_BYTES} bytes)"
        )
    return decoded


def generate_key() -> str:
    return base64.b64encode(secrets.token_bytes(ESCROW_KEY_BYTES)).decode()


def _read_key_file(path: Path, *, check_mode: bool) -> str:
    if check_mode:
        mode = stat.S_IMODE(path.stat().st_mode)
        if mode != 0o600:
            raise ConfigurationError(
                f"Key file {path} has insecure permissions {mode:04o} (must be 0600)"
            )
    return path.read_text().strip()


def load_escrow_key() -> bytes:
    """Load the escrow key from the first configured source."""
    if settings.ESCROW_KEY:
        logger.info("Escrow key loaded from environment")
        return validate_key_format(settings.ESCROW_KEY.strip())

    docker_secret = Path(settings.ESCROW_SECRET_PATH)
    if settings.ESCROW_SECRET_PATH and docker_secret.exists():
        logger.info("Escrow key loaded from Docker secret")
        return validate_key_format(_read_key_file(docker_secret, check_mode=False))

    if settings.ESCROW_KEY_FILE:
        key_file = Path(settings.ESCROW_KEY_FILE)
        if not key_file.exists():
            raise ConfigurationError(f"Escrow key file {key_file} does not exist")
        logger.info("Escrow key loaded from key file")
        return validate_key_format(_read_key_file(key_file, check_mode=True))

    raise ConfigurationError(
        "No escrow key source available. Set ESCROW_KEY, mount a Docker "
        "secret, or point ESCROW_KEY_FILE at a 0600 key file"
    )


def write_key_file(path: str) -> str:
    """Generate a key and write it to ``path`` with mode 0600."""
    key = generate_key()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as handle:
        handle.write(key + "\n")
    return key
