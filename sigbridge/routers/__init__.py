# FastAPI Routers
from sigbridge.routers.exchange import router as exchange_router
from sigbridge.routers.health import router as health_router

__all__ = [
    "exchange_router",
    "health_router",
]
