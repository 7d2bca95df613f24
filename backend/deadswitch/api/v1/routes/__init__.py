from deadswitch.api.v1.routes.auth import router as auth_router
from deadswitch.api.v1.routes.checkin import router as checkin_router
from deadswitch.api.v1.routes.messages import router as messages_router
from deadswitch.api.v1.routes.settings import router as settings_router

__all__ = ["auth_router", "checkin_router", "messages_router", "settings_router"]
