"""Versioned API router."""

from fastapi import APIRouter

from . import health, ledger, orders, reservations

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(
    reservations.router, prefix="/stores/{store_id}/reservations", tags=["reservations"]
)
router.include_router(ledger.router, prefix="/stores/{store_id}/ledger", tags=["ledger"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])

__all__ = ["router"]
