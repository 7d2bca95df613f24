"""Domain errors raised by services and rendered at the HTTP edge."""


class DeadSwitchError(Exception):
    """Base class for errors with an HTTP status and a stable code."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class InvalidInputError(DeadSwitchError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(DeadSwitchError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(DeadSwitchError):
    """Unknown or deleted switch, attachment, webhook or token."""

    status_code = 404
    code = "not_found"


class SwitchTriggeredError(DeadSwitchError):
    """Operation refused because the switch has already been released."""

    status_code = 409
    code = "already_triggered"


class PersistenceConflict(DeadSwitchError):
    """A conditional update lost a race; callers re-read and skip."""

    status_code = 409
    code = "conflict"


class DecryptionError(DeadSwitchError):
    """Payload could not be decrypted with the supplied second factor."""

    status_code = 422
    code = "decryption_failed"


class ConfigurationError(DeadSwitchError):
    """Mail or webhook settings are missing or invalid."""

    status_code = 400
    code = "not_configured"


class DispatchError(DeadSwitchError):
    """A notification channel failed after its retries."""

    status_code = 502
    code = "dispatch_failed"

    def __init__(
        self,
        message: str,
        *,
        channel: str,
        status: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.channel = channel
        self.status = status
