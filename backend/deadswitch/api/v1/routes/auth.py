"""Owner authentication: first-run setup, master password login and recovery."""

# ENDPOINTS:
# GET    /setup/status    - Whether the master password is configured
# POST   /setup           - Set the master password, returns the recovery key once
# POST   /auth/login      - Master password login with session creation
# POST   /auth/logout     - Delete the owner session
# GET    /auth/session    - Current session and its CSRF token
# POST   /auth/recover    - Reset the master password with the recovery key

import asyncio
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlmodel import Session

from deadswitch.api.deps import rate_limited, require_owner
from deadswitch.core.config import settings
from deadswitch.core.db import get_db_session
from deadswitch.core.errors import UnauthorizedError
from deadswitch.core.logger import logger
from deadswitch.core.rate_limiter import RateLimiter, get_client_ip
from deadswitch.core.sessions import (
    SessionData,
    create_session,
    delete_session,
    get_session,
    revoke_all_sessions,
)
from deadswitch.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RecoverRequest,
    RecoveryKeyResponse,
    SessionResponse,
    SetupRequest,
    SetupStatusResponse,
)
from deadswitch.services import auth as auth_service

router = APIRouter(tags=["auth"])


def _set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_id,
        httponly=True,
        secure=True,
        samesite="lax",
        max_age=settings.SESSION_TIMEOUT_MINUTES * 60,
    )


@router.get("/setup/status", response_model=SetupStatusResponse)
def setup_status(db_session: Session = Depends(get_db_session)) -> SetupStatusResponse:
    return SetupStatusResponse(configured=auth_service.is_configured(db_session))


@router.post(
    "/setup",
    response_model=RecoveryKeyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited("login"))],
)
def setup(
    setup_request: SetupRequest,
    db_session: Session = Depends(get_db_session),
) -> RecoveryKeyResponse:
    """
    Configure the master password on first run.

    The recovery key is returned exactly once and only its hash is stored.
    """
    # Honeypot check - if filled, reject silently
    if setup_request.website:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unable to complete setup",
        )

    recovery_key = auth_service.setup_master_password(
        db_session, setup_request.password, setup_request.owner_email
    )
    return RecoveryKeyResponse(recovery_key=recovery_key)


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    login_request: LoginRequest,
    request: Request,
    response: Response,
    db_session: Session = Depends(get_db_session),
) -> LoginResponse:
    """
    Verify the master password and create an owner session.

    Security measures:
    - Rate limiting (5 attempts per 5 minutes per IP)
    - Constant-time password comparison
    - Artificial delay to slow brute-force
    - HttpOnly Secure session cookie
    """
    if login_request.website:
        raise UnauthorizedError("Invalid credentials")

    client_ip = get_client_ip(request)
    limited, _, _ = RateLimiter.check("login", client_ip)
    if limited:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts",
        )
    RateLimiter.record("login", client_ip)

    await asyncio.sleep(0.1 + secrets.randbelow(200) / 1000)

    auth_service.verify_master_password(db_session, login_request.password)
    RateLimiter.reset("login", client_ip)

    session_id, session_data = create_session(
        ip_address=client_ip,
        user_agent=request.headers.get("user-agent"),
    )
    _set_session_cookie(response, session_id)
    logger.info("Owner logged in", extra={"ip": client_ip})

    return LoginResponse(
        csrf_token=session_data.csrf_token, expires_at=session_data.expires_at
    )


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(
    request: Request,
    response: Response,
    _: SessionData = Depends(require_owner),
) -> LogoutResponse:
    """Log out and delete the session."""
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if session_id:
        delete_session(session_id)

    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return LogoutResponse(message="Logged out successfully")


@router.get("/auth/session", response_model=SessionResponse)
def current_session(request: Request) -> SessionResponse:
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    session_data = get_session(session_id) if session_id else None
    if not session_data:
        return SessionResponse(authenticated=False)
    return SessionResponse(
        authenticated=True,
        csrf_token=session_data.csrf_token,
        expires_at=session_data.expires_at,
    )


@router.post(
    "/auth/recover",
    response_model=RecoveryKeyResponse,
    dependencies=[Depends(rate_limited("recover"))],
)
def recover(
    recover_request: RecoverRequest,
    db_session: Session = Depends(get_db_session),
) -> RecoveryKeyResponse:
    """Reset the master password. Open sessions end; the new recovery key is shown once."""
    new_key = auth_service.reset_master_password(
        db_session, recover_request.recovery_key, recover_request.new_password
    )
    revoke_all_sessions()
    return RecoveryKeyResponse(recovery_key=new_key)
