"""Escrow coordination: proof of funds before hire, payout on completion."""
import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillsupply.constants import CURRENCY, DEFAULT_ESCROW_FEE_RATE
from skillsupply.errors import (
    EscrowReleaseFailed,
    InvalidState,
    PaymentVerificationFailed,
    ValidationError,
)
from skillsupply.models import EscrowStatus, Listing, ListingStatus
from skillsupply.payments import PaymentRail, ReleaseError, VerificationError
from skillsupply.services.rating_service import ensure_profile
from skillsupply.store import ListingStore
from skillsupply.utils import quantize_amount, utcnow

logger = logging.getLogger(__name__)


def escrow_fee_rate() -> Decimal:
    """Platform fee charged on top of the listing amount, as a fraction."""
    raw = os.getenv("ESCROW_FEE_RATE", DEFAULT_ESCROW_FEE_RATE)
    try:
        rate = Decimal(raw)
    except InvalidOperation:
        logger.error("Ignoring malformed ESCROW_FEE_RATE=%r", raw)
        return Decimal(DEFAULT_ESCROW_FEE_RATE)
    return rate if rate >= 0 else Decimal(DEFAULT_ESCROW_FEE_RATE)


def required_deposit(amount: Decimal) -> Decimal:
    """Minimum amount the escrow deposit must carry for ``amount``."""
    amount = Decimal(amount)
    return quantize_amount(amount + amount * escrow_fee_rate())


def requires_funding(listing: Listing) -> bool:
    return Decimal(listing.amount) > 0


def select_counterpart(listing: Listing, counterpart_identity: str) -> None:
    """Record the party who will fulfill the listing.

    Shared by bid acceptance and direct hire, so both paths are held to the
    same guards.
    """
    if counterpart_identity == listing.owner_identity:
        raise ValidationError("The listing owner cannot be its own counterpart")
    if listing.counterpart_identity and listing.counterpart_identity != counterpart_identity:
        raise InvalidState(f"Listing {listing.id} already has a selected counterpart")
    listing.counterpart_identity = counterpart_identity


def start_work(listing: Listing) -> None:
    """Guarded ``open -> in_progress`` transition."""
    if ListingStatus(listing.status) != ListingStatus.OPEN:
        raise InvalidState(f"Listing {listing.id} is {listing.status}, expected open")
    if not listing.counterpart_identity:
        raise InvalidState(f"Listing {listing.id} has no selected counterpart")
    if requires_funding(listing) and listing.escrow_status != EscrowStatus.FUNDED:
        raise InvalidState(f"Listing {listing.id} escrow is not funded")
    listing.status = ListingStatus.IN_PROGRESS


def _verify_deposit(rail: PaymentRail, reference: str, amount: Decimal) -> Decimal:
    min_amount = required_deposit(amount)
    try:
        result = rail.verify_and_capture(reference, min_amount)
    except VerificationError as e:
        logger.warning("Escrow verification failed for %s: %s", reference, e)
        raise PaymentVerificationFailed(
            str(e), reason="unknown" if e.retryable else "rejected", retryable=e.retryable
        ) from e
    if not result.ok:
        logger.warning("Payment rail rejected escrow deposit %s", reference)
        raise PaymentVerificationFailed(f"Payment rail rejected transaction {reference}")
    if Decimal(result.captured_amount) < min_amount:
        logger.warning(
            "Escrow deposit %s short: captured %s, required %s", reference, result.captured_amount, min_amount
        )
        raise PaymentVerificationFailed(
            f"Captured {result.captured_amount} {CURRENCY}, at least {min_amount} {CURRENCY} required"
        )
    return Decimal(result.captured_amount)


def fund_and_hire(
    db: Session,
    rail: PaymentRail,
    listing_id: int,
    counterpart_identity: str,
    external_tx_ref: Optional[str] = None,
) -> Listing:
    """Verify the escrow deposit and move the listing into progress.

    Verification against the payment rail happens first and touches nothing.
    The hire itself is one compare-and-set against the ``open`` listing at
    the version that was verified, so at most one funded hire succeeds.

    Args:
        db: Database session.
        rail: Payment rail collaborator.
        listing_id: The listing to hire on.
        counterpart_identity: Identity of the hired party.
        external_tx_ref: Reference of the escrow deposit; ignored when the
            listing amount is zero.

    Returns:
        The listing, now ``in_progress``.

    Raises:
        NotFound: Listing does not exist.
        InvalidState: Listing not open, or another counterpart was selected.
        ValidationError: Missing counterpart or reference.
        PaymentVerificationFailed: The rail did not confirm the deposit.
    """
    counterpart = (counterpart_identity or "").strip()
    if not counterpart:
        raise ValidationError("counterpart_identity is required")

    store = ListingStore(db)
    listing = store.get(listing_id)
    if ListingStatus(listing.status) != ListingStatus.OPEN:
        raise InvalidState(f"Listing {listing_id} is {listing.status}, expected open")
    if counterpart == listing.owner_identity:
        raise ValidationError("The listing owner cannot hire themselves")
    if listing.counterpart_identity and listing.counterpart_identity != counterpart:
        raise InvalidState(f"Listing {listing_id} already has a selected counterpart")

    amount = Decimal(listing.amount)
    observed_version = listing.version
    reference = None
    if amount > 0:
        reference = (external_tx_ref or "").strip()
        if not reference:
            raise ValidationError("external_tx_ref is required for a paid listing")
        reused = db.query(Listing.id).filter(Listing.escrow_tx_ref == reference).first()
        if reused:
            raise PaymentVerificationFailed(
                f"Transaction {reference} already funds listing {reused.id}", reason="duplicate_reference"
            )
        _verify_deposit(rail, reference, amount)

    def _hire(listing: Listing) -> None:
        select_counterpart(listing, counterpart)
        if reference is not None:
            listing.escrow_status = EscrowStatus.FUNDED
            listing.escrow_tx_ref = reference
            listing.escrow_funded_at = utcnow()
        start_work(listing)

    try:
        listing, _ = store.conditional_update(
            listing_id, ListingStatus.OPEN, _hire, expected_version=observed_version
        )
    except IntegrityError as e:
        raise PaymentVerificationFailed(
            f"Transaction {reference} already funds another listing", reason="duplicate_reference"
        ) from e

    ensure_profile(db, counterpart)
    logger.info(
        "Listing #%s hired: counterpart=%s amount=%s escrow=%s", listing.id, counterpart, amount, listing.escrow_status
    )
    return listing


def claim_release(listing: Listing) -> bool:
    """Mark a funded escrow as being paid out.

    Committed on its own before the payout, so only the request that wins
    the listing version goes on to call the rail.

    Returns:
        True if a payout is now owed, False if there is nothing to release.

    Raises:
        EscrowReleaseFailed: Escrow was never funded.
    """
    if listing.escrow_status == EscrowStatus.RELEASED or not requires_funding(listing):
        return False
    if listing.escrow_status != EscrowStatus.FUNDED:
        raise EscrowReleaseFailed(f"Listing {listing.id} escrow is {listing.escrow_status}, cannot release")
    listing.escrow_status = EscrowStatus.RELEASING
    return True


def release_escrow(listing: Listing, rail: PaymentRail) -> None:
    """Pay the escrowed amount out to the payee.

    The listing must hold a committed release claim. Nothing is written here;
    :func:`record_release` stores the outcome.

    Raises:
        EscrowReleaseFailed: No claim is held or the rail refused.
    """
    if listing.escrow_status != EscrowStatus.RELEASING:
        raise EscrowReleaseFailed(f"Listing {listing.id} escrow is {listing.escrow_status}, not claimed for release")

    amount = Decimal(listing.amount)
    try:
        rail.release(listing.escrow_tx_ref, amount, listing.payee_identity)
    except ReleaseError as e:
        logger.error("Escrow release failed for listing #%s: %s", listing.id, e)
        raise EscrowReleaseFailed(str(e)) from e


def record_release(listing: Listing) -> None:
    if listing.escrow_status != EscrowStatus.RELEASING:
        raise InvalidState(f"Listing {listing.id} escrow is {listing.escrow_status}, expected releasing")
    listing.escrow_status = EscrowStatus.RELEASED
    listing.escrow_released_at = utcnow()


def abandon_release(listing: Listing) -> None:
    """Return a claimed escrow to ``funded`` after a failed payout."""
    if listing.escrow_status == EscrowStatus.RELEASING:
        listing.escrow_status = EscrowStatus.FUNDED
