"""Shared FastAPI dependencies."""

from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status

from deadswitch.core.config import settings
from deadswitch.core.db import session_factory
from deadswitch.core.errors import UnauthorizedError
from deadswitch.core.rate_limiter import RateLimiter, get_client_ip
from deadswitch.core.sessions import SessionData, get_session
from deadswitch.services.codec import PayloadCodec, get_codec
from deadswitch.services.dispatcher import NotificationDispatcher
from deadswitch.services.mailer import SMTPMailer
from deadswitch.services.orchestrator import Orchestrator
from deadswitch.services.storage import LocalStorage


def get_storage(codec: PayloadCodec = Depends(get_codec)) -> LocalStorage:
    return LocalStorage(codec)


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


def get_mailer() -> SMTPMailer:
    return SMTPMailer(timeout=settings.DISPATCH_TIMEOUT_SECONDS)


def get_orchestrator(
    codec: PayloadCodec = Depends(get_codec),
    storage: LocalStorage = Depends(get_storage),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Orchestrator:
    return Orchestrator(session_factory(), dispatcher, codec, storage)


def require_owner(request: Request) -> SessionData:
    """
    Owner session from the session cookie.

    Raises:
        UnauthorizedError: If the cookie is missing or the session expired
    """
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id:
        raise UnauthorizedError("Not authenticated")

    session_data = get_session(session_id)
    if not session_data:
        raise UnauthorizedError("Session expired")
    return session_data


def rate_limited(scope: str):
    """Dependency factory counting one attempt per client IP for ``scope``."""

    def _check(request: Request) -> None:
        identifier = get_client_ip(request)
        limited, _, reset = RateLimiter.check(scope, identifier)
        if limited:
            headers = {}
            if reset:
                headers["Retry-After"] = reset.strftime("%a, %d %b %Y %H:%M:%S GMT")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers=headers,
            )
        RateLimiter.record(scope, identifier)

    return _check
