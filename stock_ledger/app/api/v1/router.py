from fastapi import APIRouter

from stock_ledger.app.api.v1.endpoints.health import router as health_router
from stock_ledger.app.api.v1.endpoints.locations import router as locations_router
from stock_ledger.app.api.v1.endpoints.stock import router as stock_router
from stock_ledger.app.api.v1.endpoints.stock_movements import router as stock_movements_router
from stock_ledger.app.api.v1.endpoints.reports import router as reports_router
from stock_ledger.app.api.v1.endpoints.quotations import router as quotations_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(locations_router, tags=["locations"])
router.include_router(stock_router, tags=["stock"])
router.include_router(stock_movements_router, tags=["stock_movements"])
router.include_router(reports_router, tags=["reports"])
router.include_router(quotations_router, tags=["quotations"])
