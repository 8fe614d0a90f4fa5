# Overview: Structured error taxonomy shared by services and routes.

"""
Every failure the core reports carries a machine-checkable ``code``, an HTTP
status for the API layer, a human-readable message and a ``details`` dict
(product ids, available vs requested, balances).

KINDS:
- Validation errors: bad input, raised before any I/O.
- Business-rule errors: stock, credit, shift state. Concurrent writers that
  lose a race are reported with the same classes.
- Infrastructure errors: the store could not be reached or timed out. The
  outcome of the attempt is unknown to the caller, never a success.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for all structured errors raised by the service layer."""
    code = "SERVICE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class BusinessRuleError(ServiceError):
    code = "BUSINESS_RULE"
    http_status = 409


class InsufficientStockError(BusinessRuleError):
    code = "INSUFFICIENT_STOCK"


class InsufficientCreditError(BusinessRuleError):
    code = "INSUFFICIENT_CREDIT"


class ProductNotFoundError(BusinessRuleError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class CustomerNotFoundError(BusinessRuleError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404


class LocationInactiveError(BusinessRuleError):
    code = "LOCATION_INACTIVE"
    http_status = 404


class NoOpenShiftError(BusinessRuleError):
    code = "NO_OPEN_SHIFT"


class ShiftAlreadyOpenError(BusinessRuleError):
    code = "SHIFT_ALREADY_OPEN"


class ShiftNotFoundError(BusinessRuleError):
    code = "SHIFT_NOT_FOUND"
    http_status = 404


class ShiftAlreadyClosedError(BusinessRuleError):
    code = "SHIFT_ALREADY_CLOSED"


class AccessDeniedError(BusinessRuleError):
    code = "FORBIDDEN"
    http_status = 403


class ShiftAccessDeniedError(AccessDeniedError):
    pass


class PaymentRuleError(BusinessRuleError):
    code = "PAYMENT_RULE"
    http_status = 400


class PriceOverrideError(BusinessRuleError):
    code = "PRICE_OVERRIDE_DENIED"
    http_status = 403


class StoreUnavailableError(ServiceError):
    """The backing store failed or timed out; nothing can be assumed committed."""
    code = "STORE_UNAVAILABLE"
    http_status = 503


class ImmutableRecordError(BusinessRuleError):
    """A committed sale or a closed shift was about to be rewritten."""
    code = "IMMUTABLE_RECORD"


class SaleNotFoundError(BusinessRuleError):
    code = "SALE_NOT_FOUND"
    http_status = 404
