"""
Owner sessions, stored in Redis.

There is a single owner, so every session belongs to the same account. Each
session records the session generation it was issued under; bumping the
generation (after a master password reset) invalidates all of them at once.
"""

import secrets
import time
from datetime import datetime, timedelta

import redis
from pydantic import BaseModel

from deadswitch.core.clock import utcnow
from deadswitch.core.config import settings
from deadswitch.core.logger import logger

redis_client: redis.Redis | None = None

CONNECT_ATTEMPTS = 5
CONNECT_DELAY_SECONDS = 2.0


class SessionData(BaseModel):
    csrf_token: str
    created_at: datetime
    last_activity: datetime
    generation: int = 0
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)

    def is_expired(self) -> bool:
        return utcnow() > self.expires_at


def _key(session_id: str) -> str:
    return settings.REDIS_SESSION_PREFIX + session_id


def _generation_key() -> str:
    # Kept outside the session key space
    return settings.REDIS_SESSION_PREFIX.rstrip(":") + "-generation"


def _get_redis_client() -> redis.Redis:
    """Connect on first use; each worker process holds its own client."""
    global redis_client

    if redis_client is not None:
        return redis_client

    last_error = None
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            client.ping()
        except redis.RedisError as exc:
            last_error = exc
            logger.warning(
                f"Redis connection attempt {attempt}/{CONNECT_ATTEMPTS} failed",
                extra={"error": str(exc)},
            )
            if attempt < CONNECT_ATTEMPTS:
                time.sleep(CONNECT_DELAY_SECONDS)
        else:
            redis_client = client
            logger.info(f"Connected to Redis for owner sessions (attempt {attempt})")
            return redis_client

    raise RuntimeError(f"Redis connection failed: {last_error}")


def init_redis() -> None:
    _get_redis_client()


def current_generation() -> int:
    return int(_get_redis_client().get(_generation_key()) or 0)


def create_session(
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[str, SessionData]:
    """Open an owner session; returns ``(session_id, data)``."""
    now = utcnow()
    session_id = secrets.token_urlsafe(settings.SESSION_ID_LENGTH)
    session_data = SessionData(
        csrf_token=secrets.token_urlsafe(32),
        created_at=now,
        last_activity=now,
        generation=current_generation(),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    _get_redis_client().setex(
        _key(session_id),
        settings.SESSION_TIMEOUT_MINUTES * 60,
        session_data.model_dump_json(),
    )
    return session_id, session_data


def get_session(session_id: str) -> SessionData | None:
    """
    Look up a live session and slide its activity timestamp.

    Expired sessions and sessions from an older generation are deleted and
    reported as missing. The absolute lifetime never moves.
    """
    client = _get_redis_client()
    raw = client.get(_key(session_id))
    if raw is None:
        return None

    session_data = SessionData.model_validate_json(raw)
    if session_data.is_expired() or session_data.generation < current_generation():
        delete_session(session_id)
        return None

    session_data.last_activity = utcnow()
    remaining = int((session_data.expires_at - session_data.last_activity).total_seconds())
    client.setex(_key(session_id), max(remaining, 1), session_data.model_dump_json())
    return session_data


def delete_session(session_id: str) -> bool:
    return _get_redis_client().delete(_key(session_id)) > 0


def revoke_all_sessions() -> int:
    """Invalidate every open owner session; returns the new generation."""
    generation = _get_redis_client().incr(_generation_key())
    logger.warning("All owner sessions revoked", extra={"generation": generation})
    return generation
