"""
Business exceptions for the negotiation engine.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Rejected commands must be distinguishable, recoverable failures
HOW: Custom exception classes with error codes, messages and details
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class OfferValidationError(BusinessException):
    """Raised when offer or counter terms fail validation."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=message,
            code="OFFER_VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )
        self.field_errors = field_errors or []


class OfferNotFoundError(BusinessException):
    """Raised when an offer id is unknown to the store."""

    def __init__(self, offer_id: str):
        super().__init__(
            message=f"Offer not found: {offer_id}",
            code="OFFER_NOT_FOUND",
            details={"offer_id": offer_id}
        )
        self.offer_id = offer_id


class OfferTransitionError(BusinessException):
    """Base for commands rejected because of the offer's current state."""

    def __init__(self, message: str, code: str, offer_id: str,
                 status: Optional[str] = None, reason: str = ""):
        super().__init__(
            message=message,
            code=code,
            details={"offer_id": offer_id, "status": status, "reason": reason}
        )
        self.offer_id = offer_id
        self.status = status
        self.reason = reason


class CannotAcceptError(OfferTransitionError):
    """Raised when accepting a missing, expired or already settled offer."""

    def __init__(self, offer_id: str, status: Optional[str] = None, reason: str = ""):
        super().__init__(
            message=f"Offer {offer_id} cannot be accepted: {reason}",
            code="CANNOT_ACCEPT_OFFER",
            offer_id=offer_id,
            status=status,
            reason=reason
        )


class CannotRejectError(OfferTransitionError):
    """Raised when rejecting a missing, expired or already settled offer."""

    def __init__(self, offer_id: str, status: Optional[str] = None, reason: str = ""):
        super().__init__(
            message=f"Offer {offer_id} cannot be rejected: {reason}",
            code="CANNOT_REJECT_OFFER",
            offer_id=offer_id,
            status=status,
            reason=reason
        )


class CannotCounterError(OfferTransitionError):
    """Raised when countering an expired or already settled offer."""

    def __init__(self, offer_id: str, status: Optional[str] = None, reason: str = ""):
        super().__init__(
            message=f"Offer {offer_id} cannot be countered: {reason}",
            code="CANNOT_COUNTER_OFFER",
            offer_id=offer_id,
            status=status,
            reason=reason
        )


class CounterLimitReachedError(BusinessException):
    """Raised when the negotiation thread has used all counter-offer rounds."""

    def __init__(self, offer_id: str, max_counters: int, used: int, remaining: int = 0):
        super().__init__(
            message=(
                f"Maximum {max_counters} counter offers allowed for offer {offer_id}. "
                "You must accept or reject the current offer."
            ),
            code="COUNTER_LIMIT_REACHED",
            details={
                "offer_id": offer_id,
                "max": max_counters,
                "used": used,
                "remaining": remaining
            }
        )
        self.offer_id = offer_id
        self.max = max_counters
        self.used = used
        self.remaining = remaining


class SessionAlreadyActiveError(BusinessException):
    """Raised when starting a session over one that is still active."""

    def __init__(self, thread_id: str):
        super().__init__(
            message=f"Negotiation session already active for thread: {thread_id}",
            code="SESSION_ALREADY_ACTIVE",
            details={"thread_id": thread_id}
        )


class SessionNotFoundError(BusinessException):
    """Raised when a negotiation session does not exist."""

    def __init__(self, thread_id: str):
        super().__init__(
            message=f"Negotiation session not found: {thread_id}",
            code="SESSION_NOT_FOUND",
            details={"thread_id": thread_id}
        )


class BackendSyncError(BusinessException):
    """Raised when the remote marketplace backend rejects or drops a sync call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            code="BACKEND_SYNC_FAILED",
            details={"status_code": status_code} if status_code is not None else None
        )
        self.status_code = status_code
