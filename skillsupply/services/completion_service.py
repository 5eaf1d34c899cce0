"""Two-party completion confirmation."""
import enum
import logging
from typing import Callable

from sqlalchemy.orm import Session

from skillsupply.errors import ConcurrentModification, EscrowReleaseFailed, InvalidState, Unauthorized
from skillsupply.models import Listing, ListingStatus
from skillsupply.payments import PaymentRail
from skillsupply.services.escrow_service import abandon_release, claim_release, record_release, release_escrow
from skillsupply.services.rating_service import ensure_profile, increment_completed_jobs
from skillsupply.store import ListingStore
from skillsupply.utils import utcnow

logger = logging.getLogger(__name__)

# Attempts at recording a payout that has already gone out.
FINALIZE_ATTEMPTS = 3


class ConfirmationOutcome(str, enum.Enum):
    WAITING = "waiting"
    COMPLETED = "completed"
    ALREADY_CONFIRMED = "already_confirmed"
    # Internal: flag and release claim committed, payout still owed.
    RELEASE_CLAIMED = "release_claimed"


def _has_confirmed(listing: Listing, identity: str) -> bool:
    if identity == listing.owner_identity:
        return bool(listing.owner_confirmed)
    return bool(listing.counterpart_confirmed)


def _set_confirmed(listing: Listing, identity: str, value: bool) -> None:
    if identity == listing.owner_identity:
        listing.owner_confirmed = value
    else:
        listing.counterpart_confirmed = value


def confirm_completion(
    db: Session,
    rail: PaymentRail,
    listing_id: int,
    acting_identity: str,
) -> tuple[Listing, ConfirmationOutcome]:
    """Record one party's confirmation that the work is done.

    The confirmation that sets the second flag also claims the escrow for
    release in the same commit. Only the request that wins that commit pays
    out; the payout happens outside any transaction and is then recorded in
    a final commit that completes the listing and bumps both completed-job
    counters. If the payout fails, the claim and this party's flag are
    reverted, so retrying the confirmation re-attempts the release.

    Args:
        db: Database session.
        rail: Payment rail used for the escrow payout.
        listing_id: The in-progress listing.
        acting_identity: Owner or counterpart confirming.

    Returns:
        Tuple of (listing, outcome).

    Raises:
        NotFound: Listing does not exist.
        InvalidState: Listing is not in progress, or lost a concurrent race.
        Unauthorized: Identity is neither owner nor counterpart.
        EscrowReleaseFailed: Payout failed; the listing is left as before.
    """
    store = ListingStore(db)
    listing = store.get(listing_id)
    status = ListingStatus(listing.status)

    # A confirmation observed again after completion is a harmless retry.
    if status == ListingStatus.COMPLETED and listing.is_participant(acting_identity):
        return listing, ConfirmationOutcome.ALREADY_CONFIRMED
    if status != ListingStatus.IN_PROGRESS:
        raise InvalidState(f"Listing {listing_id} is {status.value}, expected in_progress")
    if not listing.is_participant(acting_identity):
        raise Unauthorized("Only the owner or the counterpart can confirm completion")
    if _has_confirmed(listing, acting_identity):
        return listing, ConfirmationOutcome.ALREADY_CONFIRMED

    participants = [listing.owner_identity, listing.counterpart_identity]
    for identity in participants:
        ensure_profile(db, identity)

    def _complete(listing: Listing) -> None:
        listing.status = ListingStatus.COMPLETED
        listing.completed_at = utcnow()
        increment_completed_jobs(db, participants)

    def _confirm(listing: Listing) -> ConfirmationOutcome:
        if _has_confirmed(listing, acting_identity):
            return ConfirmationOutcome.ALREADY_CONFIRMED
        _set_confirmed(listing, acting_identity, True)

        if not (listing.owner_confirmed and listing.counterpart_confirmed):
            return ConfirmationOutcome.WAITING
        if claim_release(listing):
            return ConfirmationOutcome.RELEASE_CLAIMED
        _complete(listing)
        return ConfirmationOutcome.COMPLETED

    listing, outcome = store.conditional_update(listing_id, ListingStatus.IN_PROGRESS, _confirm)
    if outcome == ConfirmationOutcome.RELEASE_CLAIMED:
        listing = _pay_out(store, rail, listing, acting_identity, _complete)
        outcome = ConfirmationOutcome.COMPLETED

    if outcome == ConfirmationOutcome.COMPLETED:
        logger.info(
            "Listing #%s completed: escrow=%s owner=%s counterpart=%s",
            listing.id, listing.escrow_status, listing.owner_identity, listing.counterpart_identity,
        )
    else:
        logger.info("Listing #%s confirmed by %s (%s)", listing.id, acting_identity, outcome.value)
    return listing, outcome


def _pay_out(
    store: ListingStore,
    rail: PaymentRail,
    listing: Listing,
    acting_identity: str,
    complete: Callable[[Listing], None],
) -> Listing:
    """Pay out a claimed escrow, then record the release and complete."""
    listing_id = listing.id
    try:
        release_escrow(listing, rail)
    except EscrowReleaseFailed:
        def _revert(listing: Listing) -> None:
            abandon_release(listing)
            _set_confirmed(listing, acting_identity, False)

        try:
            store.conditional_update(listing_id, ListingStatus.IN_PROGRESS, _revert)
        except InvalidState:
            logger.error("Listing #%s left with a stuck release claim after a failed payout", listing_id)
        raise

    def _finalize(listing: Listing) -> None:
        record_release(listing)
        complete(listing)

    for attempt in range(1, FINALIZE_ATTEMPTS + 1):
        try:
            listing, _ = store.conditional_update(listing_id, ListingStatus.IN_PROGRESS, _finalize)
            return listing
        except ConcurrentModification:
            logger.warning("Recording release of listing #%s raced (attempt %s)", listing_id, attempt)
    logger.error("Escrow of listing #%s was paid out but its release could not be recorded", listing_id)
    raise ConcurrentModification(listing_id)
