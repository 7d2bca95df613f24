"""Token-based routes that work without an owner session."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from sqlmodel import Session

from deadswitch.api.deps import get_storage, rate_limited
from deadswitch.core.db import get_db_session
from deadswitch.schemas.messages import (
    CheckInResponse,
    ContentResponse,
    ManagementTokenRequest,
    QuickHeartbeatResponse,
    StatusResponse,
)
from deadswitch.services import switches
from deadswitch.services.codec import PayloadCodec, get_codec
from deadswitch.services.storage import LocalStorage
from deadswitch.services.trigger import trigger_instant

router = APIRouter(tags=["checkin"], dependencies=[Depends(rate_limited("checkin"))])


@router.post("/checkin", response_model=CheckInResponse)
def check_in(
    token_request: ManagementTokenRequest,
    db_session: Session = Depends(get_db_session),
) -> CheckInResponse:
    """Check in with a management token. Unknown tokens return 404."""
    message = switches.check_in(db_session, token_request.management_token)
    return CheckInResponse(
        id=message.id,
        status=message.status,
        last_seen=message.last_seen,
        trigger_at=trigger_instant(message.last_seen, message.trigger_duration),
    )


@router.post("/checkin/delete", response_model=StatusResponse)
def delete_with_token(
    token_request: ManagementTokenRequest,
    db_session: Session = Depends(get_db_session),
    storage: LocalStorage = Depends(get_storage),
) -> StatusResponse:
    switches.delete_by_token(db_session, storage, token_request.management_token)
    return StatusResponse(message="Message deleted")


@router.post("/checkin/content", response_model=ContentResponse)
def read_content(
    token_request: ManagementTokenRequest,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
) -> ContentResponse:
    """Decrypt the switch content with its management token."""
    return ContentResponse(
        content=switches.read_content(db_session, codec, token_request.management_token)
    )


HEARTBEAT_PAGE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>deadswitch heartbeat</title></head>
<body>
<h1>{title}</h1>
<p>{body}</p>
{form}
</body>
</html>
"""

CONFIRM_FORM = '<form method="post"><button type="submit">I am still here</button></form>'


def _page(title: str, body: str, form: str = "") -> HTMLResponse:
    return HTMLResponse(HEARTBEAT_PAGE.format(title=title, body=body, form=form))


@router.get("/quick-heartbeat/{token}", response_class=HTMLResponse)
def quick_heartbeat_page(
    token: str, db_session: Session = Depends(get_db_session)
) -> HTMLResponse:
    """Landing page for the emailed link. Only the button's POST records the check-in."""
    switches.verify_heartbeat_token(db_session, token)
    return _page(
        "Confirm you are available",
        "Pressing the button checks in every active message.",
        CONFIRM_FORM,
    )


@router.post("/quick-heartbeat/{token}", response_model=QuickHeartbeatResponse)
def quick_heartbeat(
    token: str, request: Request, db_session: Session = Depends(get_db_session)
):
    """Check in every active switch with the service-wide heartbeat token."""
    updated = switches.quick_heartbeat(db_session, token)
    if "text/html" in request.headers.get("accept", ""):
        return _page("Heartbeat recorded", f"Checked in {updated} active message(s).")
    return QuickHeartbeatResponse(updated=updated)
