# Overview: Typed settlement failures shared by the services and the API layer.

"""
Settlement error taxonomy.

Every failure aborts the whole settlement with no partial state. Callers
branch on the error class (or its ``code``), never on message text.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for all settlement failures."""
    code = "SETTLEMENT_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class SettlementValidationError(SettlementError):
    """Malformed request (bad amount, unknown channel, terminal/retailer mismatch)."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(SettlementError):
    code = "NOT_FOUND"
    http_status = 404


class OutOfStock(SettlementError):
    """No available unit matches the requested voucher type and denomination."""
    code = "OUT_OF_STOCK"
    http_status = 409


class RateNotConfigured(SettlementError):
    """No commission rate for the retailer's commission group and the voucher type."""
    code = "RATE_NOT_CONFIGURED"
    http_status = 422


class InsufficientFunds(SettlementError):
    """Balance plus available credit does not cover the sale amount."""
    code = "INSUFFICIENT_FUNDS"
    http_status = 402


class ClaimConflict(SettlementError):
    """Lost a concurrent race for a unit; retry against another unit of the same denomination."""
    code = "CLAIM_CONFLICT"
    http_status = 409
    retryable = True


class PersistenceFailure(SettlementError):
    """A storage write failed after a successful claim; the settlement was rolled back."""
    code = "PERSISTENCE_FAILURE"
    http_status = 500


class VendorError(SettlementError):
    """External bill-payment call failed; nothing was claimed or charged."""
    code = "VENDOR_ERROR"
    http_status = 502
