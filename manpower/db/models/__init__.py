"""
Database Models
"""
from manpower.db.models.user import User
from manpower.db.models.job import Job
from manpower.db.models.worker_wallet import WorkerWallet
from manpower.db.models.wallet_ledger import WalletLedger
from manpower.db.models.payment import Payment
from manpower.db.models.withdrawal import Withdrawal
from manpower.db.models.chat import Conversation, ConversationParticipant, Message
from manpower.db.models.notification import Notification
from manpower.db.models.outbox_message import OutboxMessage

__all__ = [
    "User",
    "Job",
    "WorkerWallet",
    "WalletLedger",
    "Payment",
    "Withdrawal",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Notification",
    "OutboxMessage",
]
