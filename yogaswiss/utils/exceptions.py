"""
Custom exceptions for the YogaSwiss studio backend.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the platform."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Scheduling and booking
    CLASS_NOT_BOOKABLE = "CLASS_NOT_BOOKABLE"
    CLASS_FULL = "CLASS_FULL"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    CANCELLATION_WINDOW_CLOSED = "CANCELLATION_WINDOW_CLOSED"
    INVALID_STATE = "INVALID_STATE"
    RESOURCE_IN_USE = "RESOURCE_IN_USE"

    # Money
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    WALLET_NOT_ACTIVE = "WALLET_NOT_ACTIVE"
    PAYMENT_AMOUNT_INVALID = "PAYMENT_AMOUNT_INVALID"
    REFUND_AMOUNT_INVALID = "REFUND_AMOUNT_INVALID"
    GIFT_CARD_INVALID = "GIFT_CARD_INVALID"
    DRAWER_CLOSED = "DRAWER_CLOSED"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"

    # Throttling
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    PAYMENT_SERVICE_ERROR = "PAYMENT_SERVICE_ERROR"


class YogaSwissError(Exception):
    """Base exception class for the studio platform."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(YogaSwissError):
    """Exception raised for validation errors."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, List[str]]] = None,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        merged = dict(details or {})
        if field_errors:
            merged["field_errors"] = field_errors
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details=merged,
            **kwargs
        )
        self.field_errors = field_errors or {}


class NotFoundError(YogaSwissError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class ResourceNotFoundError(NotFoundError):
    """Raised when an org-scoped resource does not exist or is not visible."""

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        label = resource_type.replace("_", " ").capitalize()
        super().__init__(
            f"{label} {resource_id} not found",
            resource_type=resource_type,
            resource_id=str(resource_id),
            **kwargs
        )


class UserNotFoundError(NotFoundError):
    """Exception raised when a user is not found."""

    def __init__(self, user_ref: str, **kwargs):
        super().__init__(
            f"User {user_ref} not found",
            resource_type="user",
            resource_id=user_ref,
            suggestions=["Ask the person to create an account first"],
            **kwargs
        )


class AuthenticationError(YogaSwissError):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            suggestions=["Check your credentials", "Login again"],
            **kwargs
        )


class AuthorizationError(YogaSwissError):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            suggestions=["Ask an owner of the organization for access"],
            **kwargs
        )


class BusinessLogicError(YogaSwissError):
    """Base exception for business logic violations."""
    pass


class InvalidStateError(BusinessLogicError):
    """Raised when a resource is in the wrong state for an operation."""

    def __init__(self, resource_type: str, resource_id: Any, current_state: str, allowed_states: List[str], **kwargs):
        super().__init__(
            f"{resource_type} {resource_id} is {current_state}, expected one of: {', '.join(allowed_states)}",
            error_code=ErrorCode.INVALID_STATE,
            details={
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "current_state": current_state,
                "allowed_states": allowed_states,
            },
            **kwargs
        )


class ResourceInUseError(BusinessLogicError):
    """Raised when deleting something that other records still depend on."""

    def __init__(self, resource_type: str, resource_id: Any, reason: str, **kwargs):
        super().__init__(
            f"{resource_type} {resource_id} is still in use: {reason}",
            error_code=ErrorCode.RESOURCE_IN_USE,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
            **kwargs
        )


class ClassNotBookableError(BusinessLogicError):
    """Raised when a class occurrence cannot take registrations."""

    def __init__(self, occurrence_id: Any, reason: str, **kwargs):
        super().__init__(
            f"Class {occurrence_id} cannot be booked: {reason}",
            error_code=ErrorCode.CLASS_NOT_BOOKABLE,
            details={"occurrence_id": str(occurrence_id), "reason": reason},
            suggestions=["Pick another class from the schedule"],
            **kwargs
        )


class ClassFullError(BusinessLogicError):
    """Raised when a waitlisted customer cannot be promoted."""

    def __init__(self, occurrence_id: Any, capacity: int, **kwargs):
        super().__init__(
            f"Class {occurrence_id} is full ({capacity} spots)",
            error_code=ErrorCode.CLASS_FULL,
            details={"occurrence_id": str(occurrence_id), "capacity": capacity},
            suggestions=["Increase the class capacity", "Wait for a cancellation"],
            **kwargs
        )


class AlreadyRegisteredError(BusinessLogicError):
    """Raised when a customer already holds a spot or waitlist entry."""

    def __init__(self, occurrence_id: Any, customer_id: Any, **kwargs):
        super().__init__(
            f"Customer {customer_id} is already registered for class {occurrence_id}",
            error_code=ErrorCode.ALREADY_REGISTERED,
            details={"occurrence_id": str(occurrence_id), "customer_id": str(customer_id)},
            **kwargs
        )


class CancellationWindowError(BusinessLogicError):
    """Raised when a customer cancels too close to the class start."""

    def __init__(self, registration_id: Any, window_hours: int, **kwargs):
        super().__init__(
            f"Registration {registration_id} can no longer be cancelled "
            f"(less than {window_hours} hours before class)",
            error_code=ErrorCode.CANCELLATION_WINDOW_CLOSED,
            details={"registration_id": str(registration_id), "window_hours": window_hours},
            suggestions=["Contact the studio front desk"],
            **kwargs
        )


class InsufficientFundsError(BusinessLogicError):
    """Raised when a wallet balance cannot cover a debit."""

    def __init__(self, wallet_id: Any, requested_cents: int, available_cents: int, **kwargs):
        super().__init__(
            f"Insufficient wallet balance: requested {requested_cents}, available {available_cents}",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            details={
                "wallet_id": str(wallet_id),
                "requested_cents": requested_cents,
                "available_cents": available_cents,
            },
            suggestions=["Top up the wallet", "Choose another payment method"],
            **kwargs
        )


class InsufficientCreditsError(BusinessLogicError):
    """Raised when a wallet has too few class credits."""

    def __init__(self, wallet_id: Any, requested: int, available: int, **kwargs):
        super().__init__(
            f"Insufficient credits: requested {requested}, available {available}",
            error_code=ErrorCode.INSUFFICIENT_CREDITS,
            details={"wallet_id": str(wallet_id), "requested": requested, "available": available},
            suggestions=["Buy a class pass"],
            **kwargs
        )


class WalletNotActiveError(BusinessLogicError):
    """Raised when mutating a frozen or closed wallet."""

    def __init__(self, wallet_id: Any, status: str, **kwargs):
        super().__init__(
            f"Wallet {wallet_id} is {status}",
            error_code=ErrorCode.WALLET_NOT_ACTIVE,
            details={"wallet_id": str(wallet_id), "status": status},
            **kwargs
        )


class PaymentAmountError(BusinessLogicError):
    """Raised when a payment amount does not fit the order."""

    def __init__(self, amount_cents: int, outstanding_cents: int, **kwargs):
        super().__init__(
            f"Payment amount {amount_cents} is invalid, outstanding balance is {outstanding_cents}",
            error_code=ErrorCode.PAYMENT_AMOUNT_INVALID,
            details={"amount_cents": amount_cents, "outstanding_cents": outstanding_cents},
            **kwargs
        )


class RefundAmountError(BusinessLogicError):
    """Raised when a refund exceeds what was captured."""

    def __init__(self, amount_cents: int, refundable_cents: int, **kwargs):
        super().__init__(
            f"Refund amount {amount_cents} exceeds refundable amount {refundable_cents}",
            error_code=ErrorCode.REFUND_AMOUNT_INVALID,
            details={"amount_cents": amount_cents, "refundable_cents": refundable_cents},
            **kwargs
        )


class GiftCardError(BusinessLogicError):
    """Raised for unusable gift cards."""

    def __init__(self, code: str, reason: str, **kwargs):
        super().__init__(
            f"Gift card {code} cannot be used: {reason}",
            error_code=ErrorCode.GIFT_CARD_INVALID,
            details={"code": code, "reason": reason},
            **kwargs
        )


class DrawerClosedError(BusinessLogicError):
    """Raised when recording cash on a closed drawer."""

    def __init__(self, drawer_id: Any, **kwargs):
        super().__init__(
            f"Cash drawer {drawer_id} is closed",
            error_code=ErrorCode.DRAWER_CLOSED,
            details={"drawer_id": str(drawer_id)},
            suggestions=["Open a new drawer session"],
            **kwargs
        )


class WebhookSignatureError(YogaSwissError):
    """Raised when a provider webhook signature does not verify."""

    def __init__(self, message: str = "Invalid webhook signature", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.WEBHOOK_SIGNATURE_INVALID,
            **kwargs
        )


class RateLimitError(YogaSwissError):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, limit: int, window: int, retry_after: int, **kwargs):
        super().__init__(
            f"Rate limit exceeded: {limit} requests per {window} seconds",
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            details={"limit": limit, "window": window},
            retry_after=retry_after,
            suggestions=[f"Wait {retry_after} seconds before retrying"],
            **kwargs
        )


class ExternalServiceError(YogaSwissError):
    """Exception raised for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        merged = {"service_name": service_name, "status_code": status_code}
        merged.update(details or {})
        super().__init__(
            f"{service_name} service error: {message}",
            error_code=error_code,
            details=merged,
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )
        self.service_name = service_name
        self.status_code = status_code


class PaymentServiceError(ExternalServiceError):
    """Exception raised for payment provider failures."""

    def __init__(self, provider: str, message: str, **kwargs):
        super().__init__(
            provider,
            message,
            error_code=ErrorCode.PAYMENT_SERVICE_ERROR,
            **kwargs
        )
