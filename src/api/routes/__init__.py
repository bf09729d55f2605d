"""
API Routes

Route definitions for the operations API.
"""
from src.api.routes.health import router as health_router
from src.api.routes.metrics import router as metrics_router

__all__ = [
    "health_router",
    "metrics_router",
]
