# backoffice/routes/__init__.py
"""
API route handlers organized by domain.
"""

from backoffice.routes.external_orders import router as external_orders_router
from backoffice.routes.health import router as health_router
from backoffice.routes.orders import router as orders_router
from backoffice.routes.payouts import router as payouts_router
from backoffice.routes.postbacks import router as postbacks_router

__all__ = [
    "external_orders_router",
    "health_router",
    "orders_router",
    "payouts_router",
    "postbacks_router",
]
