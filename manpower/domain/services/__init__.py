"""
Domain Services
"""
from manpower.domain.services.wallet_service import WalletService
from manpower.domain.services.outbox_service import OutboxService
from manpower.domain.services.notification_service import NotificationService
from manpower.domain.services.chat_service import ChatService
from manpower.domain.services.payment_service import PaymentService
from manpower.domain.services.realtime import RealtimeHub, get_realtime_hub

__all__ = [
    "WalletService",
    "OutboxService",
    "NotificationService",
    "ChatService",
    "PaymentService",
    "RealtimeHub",
    "get_realtime_hub",
]
