"""
Parted Euro Exception Hierarchy

Structured exception classes for the shipping quote and settlement subsystems.
All exceptions carry code, message, and details for logging and the
failed-settlement audit trail.

Exception Hierarchy:
    PartedEuroError
    ├── ShippingUnavailable
    ├── ProviderError
    │   ├── CsrfTokenUnavailable
    │   ├── CarrierTimeoutError
    │   └── CarrierCircuitOpenError
    ├── CheckoutError
    │   └── ListingNotFoundError
    ├── SettlementError
    ├── InventoryError
    │   ├── OversellError
    │   └── AllocationConflictError
    ├── OrderNotFoundError
    ├── InvalidStatusTransitionError
    └── XeroError
        └── XeroNotConnectedError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class PartedEuroError(Exception):
    """
    Base exception for all Parted Euro custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "PARTED_EURO_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingUnavailable(PartedEuroError):
    """A carrier had no usable service for the given package and destination."""
    default_code = "SHIPPING_UNAVAILABLE"
    default_severity = "P2"

    def __init__(self, message: str, carrier: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["carrier"] = carrier
        super().__init__(message, details=details, **kwargs)


class ProviderError(PartedEuroError):
    """Malformed or error response from a carrier endpoint."""
    default_code = "PROVIDER_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        carrier: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "carrier": carrier,
            "status_code": status_code,
        })
        super().__init__(message, details=details, **kwargs)


class CsrfTokenUnavailable(ProviderError):
    """The quote page did not expose a CSRF token."""
    default_code = "CSRF_TOKEN_UNAVAILABLE"


class CarrierTimeoutError(ProviderError):
    """A carrier call exceeded its time budget."""
    default_code = "CARRIER_TIMEOUT"


class CarrierCircuitOpenError(ProviderError):
    """Circuit breaker is open - carrier calls suspended."""
    default_code = "CARRIER_CIRCUIT_OPEN"

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# CHECKOUT / ORDER ERRORS
# =============================================================================

class CheckoutError(PartedEuroError):
    """Checkout session could not be created."""
    default_code = "CHECKOUT_ERROR"
    default_severity = "P1"


class ListingNotFoundError(CheckoutError):
    default_code = "LISTING_NOT_FOUND"
    default_severity = "P3"

    def __init__(self, message: str, listing_ids=None, **kwargs):
        details = kwargs.pop("details", {})
        details["listing_ids"] = list(listing_ids or [])
        super().__init__(message, details=details, **kwargs)


class OrderNotFoundError(PartedEuroError):
    default_code = "ORDER_NOT_FOUND"
    default_severity = "P3"


class InvalidStatusTransitionError(PartedEuroError):
    """Order is in a terminal state or the target status is unknown."""
    default_code = "INVALID_STATUS_TRANSITION"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "from_status": from_status,
            "to_status": to_status,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SETTLEMENT ERRORS
# =============================================================================

class SettlementError(PartedEuroError):
    """Invoice creation, payment recording, order update or allocation failed."""
    default_code = "SETTLEMENT_FAILED"
    default_severity = "P0"

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        step: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "order_id": order_id,
            "step": step,
        })
        super().__init__(message, details=details, **kwargs)


class XeroError(PartedEuroError):
    """Xero API error with the response payload attached."""
    default_code = "XERO_ERROR"
    default_severity = "P1"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class XeroNotConnectedError(XeroError):
    """No stored token set; an admin must complete the consent flow."""
    default_code = "XERO_NOT_CONNECTED"
    default_severity = "P0"


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(PartedEuroError):
    """Base exception for inventory-related errors."""
    default_code = "INVENTORY_ERROR"
    default_severity = "P1"


class OversellError(InventoryError):
    """Backing parts were exhausted before the ordered quantity was allocated."""
    default_code = "INVENTORY_OVERSELL"

    def __init__(
        self,
        message: str,
        listing_id: Optional[str] = None,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "listing_id": listing_id,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        super().__init__(message, details=details, **kwargs)


class AllocationConflictError(InventoryError):
    """Conditional decrements kept losing to concurrent settlements."""
    default_code = "INVENTORY_ALLOCATION_CONFLICT"
