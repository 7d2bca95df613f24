"""Unauthenticated service info and liveness routes."""

from fastapi import APIRouter, Request

from deadswitch.core.config import settings

router = APIRouter(prefix="/api", tags=["info"])


def sweeper_status(request: Request) -> dict:
    driver = getattr(request.app.state, "sweep_driver", None)
    if driver is None:
        return {"state": "disabled", "last_run_at": None, "last_run_ok": None}
    return {
        "state": "running" if driver.running else "stopped",
        "last_run_at": driver.last_run_at.isoformat() if driver.last_run_at else None,
        "last_run_ok": driver.last_report is not None if driver.last_run_at else None,
    }


@router.get("/info")
def get_info():
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.PROJECT_VERSION,
        "description": settings.DESCRIPTION,
        "api": settings.API_V1_STR,
        "sweep_interval_seconds": settings.SWEEP_INTERVAL_SECONDS,
    }


@router.get("/health")
def health_check(request: Request):
    """Liveness plus the state of the background sweeper.

    A sweeper that should run but has stopped reports ``degraded``.
    """
    sweeper = sweeper_status(request)
    status = "degraded" if sweeper["state"] == "stopped" else "ok"
    return {"status": status, "sweeper": sweeper}
