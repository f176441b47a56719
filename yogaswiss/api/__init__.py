"""API endpoints for the YogaSwiss studio backend."""

from fastapi import APIRouter
from .auth import router as auth_router
from .organizations import router as organizations_router
from .customers import router as customers_router
from .customers import locations_router
from .classes import router as classes_router
from .registrations import router as registrations_router
from .wallets import router as wallets_router
from .orders import router as orders_router
from .payments import router as payments_router
from .refunds import router as refunds_router
from .gift_cards import router as gift_cards_router
from .invoices import router as invoices_router
from .earnings import router as earnings_router
from .cash_drawers import router as cash_drawers_router
from .reports import router as reports_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Include all routers
api_router.include_router(auth_router)
api_router.include_router(organizations_router)
api_router.include_router(customers_router)
api_router.include_router(locations_router)
api_router.include_router(classes_router)
api_router.include_router(registrations_router)
api_router.include_router(wallets_router)
api_router.include_router(orders_router)
api_router.include_router(payments_router)
api_router.include_router(refunds_router)
api_router.include_router(gift_cards_router)
api_router.include_router(invoices_router)
api_router.include_router(earnings_router)
api_router.include_router(cash_drawers_router)
api_router.include_router(reports_router)

__all__ = ["api_router"]
