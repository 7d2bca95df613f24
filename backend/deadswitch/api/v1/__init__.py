from fastapi import APIRouter

from deadswitch.api.v1.routes import (
    auth_router,
    checkin_router,
    messages_router,
    settings_router,
)
from deadswitch.core.config import settings

api_v1_router = APIRouter(prefix=settings.API_V1_STR)
api_v1_router.include_router(auth_router)
api_v1_router.include_router(messages_router)
api_v1_router.include_router(settings_router)
api_v1_router.include_router(checkin_router)

__all__ = ["api_v1_router"]
