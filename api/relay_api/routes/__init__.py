"""API routes for the relay API."""

from relay_api.routes.health import router as health_router
from relay_api.routes.messages import router as messages_router

__all__ = ["health_router", "messages_router"]
