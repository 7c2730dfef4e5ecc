"""
API Routes
"""
from fastapi import APIRouter

from manpower.api.routes.payments import router as payments_router
from manpower.api.routes.admin import router as admin_router
from manpower.api.routes.chat import router as chat_router
from manpower.api.routes.notifications import router as notifications_router

router = APIRouter()

router.include_router(payments_router, prefix="/payments", tags=["Payments"])
router.include_router(admin_router, prefix="/admin", tags=["Admin"])
router.include_router(chat_router, prefix="/chat", tags=["Chat"])
router.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
