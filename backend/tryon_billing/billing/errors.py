"""
Billing error hierarchy.

Provides:
- BillingError: base for all billing-core failures
- IdentityUnresolvedError: subscriber cannot be linked to a durable user yet
- UpstreamUnavailableError: billing platform lookup timed out or failed
- StorageInconsistencyError: the two ledger locations disagree (bug class)

Insufficient credits is NOT an exception: spend returns a SpendResult.
"""

from typing import Optional


class BillingError(Exception):
    """Base exception for billing-core failures."""

    error_code = "BILLING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class IdentityUnresolvedError(BillingError):
    """
    Raised when a billing subscriber cannot be mapped to a durable user.

    Recorded and answered with soft-success; recovered later by
    ensure-entitlement.
    """

    error_code = "IDENTITY_UNRESOLVED"

    def __init__(self, subscriber_id: str, aliases: Optional[list] = None):
        self.subscriber_id = subscriber_id
        self.aliases = list(aliases or [])
        super().__init__(f"No durable user id for subscriber {subscriber_id}")


class UpstreamUnavailableError(BillingError):
    """Raised when the billing platform cannot be reached or answers with an error."""

    error_code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, detail: str, status_code: Optional[int] = None, cause: Optional[Exception] = None):
        self.detail = detail
        self.status_code = status_code
        self.cause = cause
        super().__init__(f"Billing platform unavailable: {detail}")


class StorageInconsistencyError(BillingError):
    """Raised when the entitlement balance and the credits mirror disagree."""

    error_code = "STORAGE_INCONSISTENCY"

    def __init__(self, user_id: str, entitlement_balance: Optional[int], mirror_balance: Optional[int]):
        self.user_id = user_id
        self.entitlement_balance = entitlement_balance
        self.mirror_balance = mirror_balance
        super().__init__(
            f"Ledger divergence for {user_id}: entitlement={entitlement_balance} credits={mirror_balance}"
        )
