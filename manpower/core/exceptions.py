"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Service code raises these; the handlers in ``manpower.core.middleware`` turn them
into ``{"success": false, "message": ..., "error": {...}}`` responses.
"""
from decimal import Decimal
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # Payment errors (2xxx)
    PAYMENT_NOT_FOUND = "ERR_2001"
    PAYMENT_ALREADY_COMPLETED = "ERR_2002"
    PAYMENT_INVALID_STATUS = "ERR_2003"
    JOB_NOT_FOUND = "ERR_2004"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    INVALID_USER_ROLE = "ERR_3004"

    # Wallet / withdrawal errors (4xxx)
    INSUFFICIENT_FUNDS = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    WALLET_CONFLICT = "ERR_4004"
    BELOW_MINIMUM_WITHDRAWAL = "ERR_4005"
    WITHDRAWAL_NOT_FOUND = "ERR_4006"
    WITHDRAWAL_ALREADY_PROCESSED = "ERR_4007"
    INSUFFICIENT_PENDING_BALANCE = "ERR_4008"

    # External service errors (5xxx)
    PAYMENT_PROCESSOR_UNAVAILABLE = "ERR_5001"
    PAYMENT_PROCESSOR_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # Chat / notification errors (6xxx)
    CONVERSATION_NOT_FOUND = "ERR_6001"
    NOTIFICATION_NOT_FOUND = "ERR_6002"


def _money(value: Decimal | float | int) -> str:
    """Details carry amounts as strings"""
    return str(value)


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "success": False,
            "message": self.message,
            "error": {
                "code": self.error_code.value,
                "details": self.details,
            },
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND,
        message: str | None = None,
    ):
        super().__init__(
            message=message or f"{resource} not found",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class JobNotFoundError(NotFoundException):
    def __init__(self, job_id: int):
        super().__init__("Job", job_id, ErrorCode.JOB_NOT_FOUND)


class UserNotFoundError(NotFoundException):
    """Raised when a referenced user is missing (or has the wrong role)"""

    def __init__(self, identifier: Any, message: str | None = None):
        super().__init__("User", identifier, ErrorCode.USER_NOT_FOUND, message=message)


class PaymentNotFoundError(NotFoundException):
    def __init__(self, payment_id: int):
        super().__init__("Payment", payment_id, ErrorCode.PAYMENT_NOT_FOUND)


class WithdrawalNotFoundError(NotFoundException):
    def __init__(self, withdrawal_id: int):
        super().__init__("Withdrawal", withdrawal_id, ErrorCode.WITHDRAWAL_NOT_FOUND)


class ConversationNotFoundError(NotFoundException):
    def __init__(self, conversation_id: int):
        super().__init__("Conversation", conversation_id, ErrorCode.CONVERSATION_NOT_FOUND)


class NotificationNotFoundError(NotFoundException):
    def __init__(self, notification_id: int):
        super().__init__("Notification", notification_id, ErrorCode.NOTIFICATION_NOT_FOUND)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UnauthorizedError(AppException):
    """Missing, invalid or expired credentials"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class ForbiddenError(AppException):
    """Authenticated, but the role or ownership does not allow the action"""

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details=details,
        )


# ---------------------------------------------------------------------------
# Payment state
# ---------------------------------------------------------------------------


class PaymentException(AppException):
    """Base exception for payment-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        payment_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if payment_id:
            self.details["payment_id"] = payment_id


class PaymentAlreadyCompletedError(PaymentException):
    """Raised on a second confirmation of the same payment"""

    def __init__(self, payment_id: int):
        super().__init__(
            message="Payment already completed",
            error_code=ErrorCode.PAYMENT_ALREADY_COMPLETED,
            payment_id=payment_id,
        )


class PaymentStatusError(PaymentException):
    """Raised when a payment's status does not allow the operation"""

    def __init__(self, payment_id: int, current_status: str):
        super().__init__(
            message=f"Payment cannot be confirmed from status '{current_status}'",
            error_code=ErrorCode.PAYMENT_INVALID_STATUS,
            payment_id=payment_id,
            details={"current_status": current_status},
        )


# ---------------------------------------------------------------------------
# Wallet / withdrawal
# ---------------------------------------------------------------------------


class WalletException(AppException):
    """Base exception for wallet-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        worker_id: int | None = None,
        details: dict[str, Any] | None = None,
        status_code: int = 400,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if worker_id:
            self.details["worker_id"] = worker_id


class InsufficientFundsError(WalletException):
    """Raised when a withdrawal exceeds the available balance"""

    def __init__(self, worker_id: int, balance: Decimal, requested: Decimal):
        super().__init__(
            message="Insufficient balance",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            worker_id=worker_id,
            details={
                "balance": _money(balance),
                "requested_amount": _money(requested),
            },
        )


class BelowMinimumWithdrawalError(WalletException):
    """Raised when a withdrawal is below the platform floor"""

    def __init__(self, worker_id: int, requested: Decimal, minimum: Decimal):
        super().__init__(
            message=f"Minimum withdrawal amount is ${minimum}",
            error_code=ErrorCode.BELOW_MINIMUM_WITHDRAWAL,
            worker_id=worker_id,
            details={
                "requested_amount": _money(requested),
                "minimum_amount": _money(minimum),
            },
        )


class InsufficientPendingBalanceError(WalletException):
    """A release/settle would drive pending_balance below zero"""

    def __init__(self, worker_id: int, pending_balance: Decimal, requested: Decimal):
        super().__init__(
            message="Pending balance is lower than the withdrawal amount",
            error_code=ErrorCode.INSUFFICIENT_PENDING_BALANCE,
            worker_id=worker_id,
            details={
                "pending_balance": _money(pending_balance),
                "requested_amount": _money(requested),
            },
        )


class WalletConflictError(WalletException):
    """The wallet row changed between read and write (optimistic version check)"""

    def __init__(self, worker_id: int | None = None):
        super().__init__(
            message="Wallet was modified concurrently, please retry",
            error_code=ErrorCode.WALLET_CONFLICT,
            worker_id=worker_id,
            status_code=409,
        )


class WithdrawalAlreadyProcessedError(AppException):
    """Raised when processing a withdrawal that is no longer pending"""

    def __init__(self, withdrawal_id: int, current_status: str):
        super().__init__(
            message="Withdrawal already processed",
            error_code=ErrorCode.WITHDRAWAL_ALREADY_PROCESSED,
            status_code=400,
            details={"withdrawal_id": withdrawal_id, "current_status": current_status},
        )


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class PaymentProcessorUnavailableError(AppException):
    """No payment processor is configured"""

    def __init__(self):
        super().__init__(
            message=(
                "Payment system is not configured. "
                "Please add STRIPE_SECRET_KEY to environment variables."
            ),
            error_code=ErrorCode.PAYMENT_PROCESSOR_UNAVAILABLE,
            status_code=400,
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class PaymentProcessorError(ExternalServiceException):
    """Raised when the payment processor API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="stripe",
            message=f"Payment processor error: {message}",
            error_code=ErrorCode.PAYMENT_PROCESSOR_ERROR,
            details=details
        )

    @classmethod
    def from_stripe_error(cls, operation: str, error: Any) -> "PaymentProcessorError":
        """Build the error from a Stripe SDK exception, keeping the provider's message when present"""
        return cls(
            message=getattr(error, "user_message", None) or f"{operation} failed: {type(error).__name__}",
            details={
                "operation": operation,
                "status_code": getattr(error, "http_status", None),
                "code": getattr(error, "code", None),
                "error_type": type(error).__name__,
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
