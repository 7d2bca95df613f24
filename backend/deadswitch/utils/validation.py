import os
import unicodedata

import regex
from zxcvbn import zxcvbn

from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError

EMAIL_REGEX = regex.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
DANGEROUS_EMAIL_PATTERNS = ("<script", "javascript:", "data:", "vbscript:")

ALLOWED_EXTENSIONS = frozenset(
    {".pdf", ".txt", ".doc", ".docx", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".zip"}
)
ALLOWED_MIME_PREFIXES = (
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/zip",
    "application/octet-stream",
)
MAX_FILENAME_LENGTH = 255


def validate_password_strength(password: str) -> None:
    """Validate master password strength using zxcvbn plus character classes."""
    if not password:
        raise InvalidInputError("Password is required")

    if (
        len(password) < settings.MIN_PASSWORD_LENGTH
        or len(password) > settings.MAX_PASSWORD_LENGTH
    ):
        raise InvalidInputError(
            f"Password must be {settings.MIN_PASSWORD_LENGTH}-"
            f"{settings.MAX_PASSWORD_LENGTH} characters"
        )

    requirements = {
        "uppercase letter": any(c.isupper() for c in password),
        "lowercase letter": any(c.islower() for c in password),
        "digit": any(c.isdigit() for c in password),
        "special character": any(
            c in r"!@#$%^&*()_+-=[]{};:'\",.<>?/\\|`~" for c in password
        ),
    }

    missing = [label for label, ok in requirements.items() if not ok]
    if missing:
        raise InvalidInputError(f"Password must contain: {', '.join(missing)}")

    analysis = zxcvbn(password)
    if analysis.get("score", 0) < 3:  # zxcvbn score 0-4
        raise InvalidInputError(
            "Password is too weak. Use a longer passphrase with mixed characters."
        )


def validate_email_format(email: str) -> str:
    """Validate email format and return normalized email."""
    if not email or not email.strip():
        raise InvalidInputError("Email is required")

    email = email.strip()

    if len(email) > 254:
        raise InvalidInputError("Email is too long")

    if not EMAIL_REGEX.match(email):
        raise InvalidInputError("Invalid email format")

    lowered = email.lower()
    if any(pattern in lowered for pattern in DANGEROUS_EMAIL_PATTERNS):
        raise InvalidInputError("Invalid email format")

    return email


def validate_content(content: str) -> str:
    if not content:
        raise InvalidInputError("Content is required")
    if len(content) > settings.MAX_CONTENT_LENGTH:
        raise InvalidInputError(
            f"Content exceeds maximum length of {settings.MAX_CONTENT_LENGTH} characters"
        )
    return content


def validate_trigger_duration(duration: int) -> int:
    """Duration in minutes, between one minute and one year."""
    if duration < settings.MIN_TRIGGER_MINUTES:
        raise InvalidInputError(
            f"Duration must be at least {settings.MIN_TRIGGER_MINUTES} minute"
        )
    if duration > settings.MAX_TRIGGER_MINUTES:
        raise InvalidInputError(
            f"Duration cannot exceed {settings.MAX_TRIGGER_MINUTES} minutes"
        )
    return duration


def sanitize_filename(filename: str) -> str:
    """Strip directories, control characters and leading dots from an upload name."""
    name = os.path.basename((filename or "").replace("\\", "/"))
    name = "".join(
        c for c in name if c != "\x00" and not unicodedata.category(c).startswith("C")
    )
    name = name.lstrip(".")
    if not name:
        name = "unnamed_file"

    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


def validate_file(filename: str, size: int, mime_type: str) -> None:
    if size == 0:
        raise InvalidInputError("File is empty")
    if size > settings.MAX_FILE_SIZE:
        raise InvalidInputError(
            f"File exceeds maximum size of {settings.MAX_FILE_SIZE // (1024 * 1024)} MB"
        )

    ext = os.path.splitext(filename)[1].lower()
    if not ext:
        raise InvalidInputError("File must have an extension")
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidInputError(
            "File type not allowed. Allowed: PDF, TXT, DOC, DOCX, JPG, PNG, GIF, WEBP, ZIP"
        )

    if not (mime_type or "").lower().startswith(ALLOWED_MIME_PREFIXES):
        raise InvalidInputError("File content type not allowed")
