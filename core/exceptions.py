"""
Custom application exceptions.

These exceptions represent business logic errors. The HTTP layer maps each
one to a status code; everything else is an unexpected failure.
"""
from decimal import Decimal
from typing import Optional


class ReferralLedgerError(Exception):
    """Base exception for all application errors."""

    message: str = "An error occurred"
    code: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: Optional[str] = None, **kwargs):
        self.message = message or self.message
        self.details = kwargs
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        data.update(self.details)
        return data


# ============== Authentication & Authorization ==============

class AuthenticationRequiredError(ReferralLedgerError):
    """Caller identity is missing or invalid."""
    message = "Authentication required"
    code = "authentication_required"
    http_status = 401


class PermissionDeniedError(ReferralLedgerError):
    """Caller doesn't have permission for this action."""
    message = "Access denied"
    code = "permission_denied"
    http_status = 403


class AdminOnlyError(PermissionDeniedError):
    """Action is only allowed for administrators."""
    message = "Admin access required"


# ============== Validation & lookup ==============

class ValidationError(ReferralLedgerError):
    """Malformed request."""
    message = "Validation error"
    code = "validation_error"
    http_status = 400

    def __init__(self, field: str, error: str):
        self.field = field
        self.error = error
        super().__init__(f"Invalid '{field}': {error}", field=field)


class NotFoundError(ReferralLedgerError):
    """Unknown referrer, referral code, earning or payout request."""
    message = "Not found"
    code = "not_found"
    http_status = 404

    def __init__(self, resource: str, identifier: object = None):
        self.resource = resource
        self.identifier = identifier
        if identifier is None:
            text = f"{resource} not found"
        else:
            text = f"{resource} '{identifier}' not found"
        super().__init__(text, resource=resource)


# ============== Ledger ==============

class InsufficientEligibleFunds(ReferralLedgerError):
    """Requested payout exceeds what is currently matured and unreserved."""
    message = "Requested amount exceeds eligible earnings"
    code = "insufficient_eligible_funds"
    http_status = 400

    def __init__(self, eligible_total: Decimal, requested_amount: Decimal, currency: str):
        self.eligible_total = eligible_total
        self.requested_amount = requested_amount
        self.currency = currency
        super().__init__(
            f"Requested {requested_amount} {currency} exceeds eligible earnings "
            f"of {eligible_total} {currency}",
            eligibleTotal=float(eligible_total),
            requestedAmount=float(requested_amount),
            currency=currency,
        )


class InvalidTransition(ReferralLedgerError):
    """Status change not allowed from the current state."""
    message = "Invalid status transition"
    code = "invalid_transition"
    http_status = 409

    def __init__(self, current_status: str, target_status: str, resource: str = "payout request"):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot change {resource} status from '{current_status}' to '{target_status}'",
            currentStatus=current_status,
            targetStatus=target_status,
        )


class LedgerIntegrityError(ReferralLedgerError):
    """A write touched fewer ledger rows than the invariant requires; the unit of work was rolled back."""
    message = "Ledger integrity check failed"
    code = "ledger_integrity_error"
    http_status = 500
