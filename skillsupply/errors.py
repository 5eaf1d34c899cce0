"""Domain errors raised by the marketplace services.

Every error carries a machine-readable ``code``, the HTTP status the API
layer maps it to, and whether the caller may safely retry after re-reading
the listing.
"""
from typing import Optional

from skillsupply.constants import (
    ERR_DUPLICATE_BID,
    ERR_DUPLICATE_RATING,
    ERR_ESCROW_RELEASE_FAILED,
    ERR_INVALID_STATE,
    ERR_NOT_FOUND,
    ERR_PAYMENT_VERIFICATION_FAILED,
    ERR_UNAUTHORIZED,
    ERR_VALIDATION,
)


class MarketplaceError(Exception):
    """Base class for all marketplace domain errors."""

    code: str = "MARKETPLACE_ERROR"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, object]:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


class NotFound(MarketplaceError):
    code = ERR_NOT_FOUND
    status_code = 404


class Unauthorized(MarketplaceError):
    """Identity does not hold the role the operation requires."""

    code = ERR_UNAUTHORIZED
    status_code = 403


class InvalidState(MarketplaceError):
    """Operation is not valid for the listing's current status."""

    code = ERR_INVALID_STATE
    status_code = 409


class ConcurrentModification(InvalidState):
    """Listing changed between read and commit; re-read and retry."""

    retryable = True

    def __init__(self, listing_id: int) -> None:
        super().__init__(f"Listing {listing_id} was modified concurrently")
        self.listing_id = listing_id


class ValidationError(MarketplaceError):
    code = ERR_VALIDATION
    status_code = 422


class DuplicateBid(MarketplaceError):
    code = ERR_DUPLICATE_BID
    status_code = 409


class DuplicateRating(MarketplaceError):
    code = ERR_DUPLICATE_RATING
    status_code = 409


class PaymentVerificationFailed(MarketplaceError):
    """The payment rail did not confirm the escrow deposit.

    ``reason`` is ``"rejected"`` when the rail refused the reference and
    ``"unknown"`` when the reference could not be resolved (yet).
    """

    code = ERR_PAYMENT_VERIFICATION_FAILED
    status_code = 402

    def __init__(self, message: str, *, reason: str = "rejected", retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)
        self.reason = reason

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class EscrowReleaseFailed(MarketplaceError):
    code = ERR_ESCROW_RELEASE_FAILED
    status_code = 502
    retryable = True
