from fastapi import APIRouter

from caterflow.app.api.v1.endpoints.health import router as health_router
from caterflow.app.api.v1.endpoints.auth import router as auth_router
from caterflow.app.api.v1.endpoints.users import router as users_router
from caterflow.app.api.v1.endpoints.sites import router as sites_router
from caterflow.app.api.v1.endpoints.bins import router as bins_router
from caterflow.app.api.v1.endpoints.categories import router as categories_router
from caterflow.app.api.v1.endpoints.suppliers import router as suppliers_router
from caterflow.app.api.v1.endpoints.dispatch_types import router as dispatch_types_router
from caterflow.app.api.v1.endpoints.stock_items import router as stock_items_router
from caterflow.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from caterflow.app.api.v1.endpoints.goods_receipts import router as goods_receipts_router
from caterflow.app.api.v1.endpoints.transfers import router as transfers_router
from caterflow.app.api.v1.endpoints.dispatches import router as dispatches_router
from caterflow.app.api.v1.endpoints.adjustments import router as adjustments_router
from caterflow.app.api.v1.endpoints.bin_counts import router as bin_counts_router
from caterflow.app.api.v1.endpoints.stock import router as stock_router
from caterflow.app.api.v1.endpoints.analytics import router as analytics_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(auth_router, tags=["auth"])
router.include_router(users_router, tags=["users"])
router.include_router(sites_router, tags=["sites"])
router.include_router(bins_router, tags=["bins"])
router.include_router(categories_router, tags=["categories"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(dispatch_types_router, tags=["dispatch_types"])
router.include_router(stock_items_router, tags=["stock_items"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(goods_receipts_router, tags=["goods_receipts"])
router.include_router(transfers_router, tags=["transfers"])
router.include_router(dispatches_router, tags=["dispatches"])
router.include_router(adjustments_router, tags=["adjustments"])
router.include_router(bin_counts_router, tags=["bin_counts"])
router.include_router(stock_router, tags=["stock"])
router.include_router(analytics_router, tags=["analytics"])
