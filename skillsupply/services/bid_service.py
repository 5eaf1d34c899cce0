"""Bid ledger: one active bid per bidder per open listing."""
import logging

from sqlalchemy.orm import Session

from skillsupply.errors import DuplicateBid, InvalidState, NotFound, Unauthorized, ValidationError
from skillsupply.models import Bid, BidStatus, Listing, ListingStatus
from skillsupply.services.escrow_service import requires_funding, select_counterpart, start_work
from skillsupply.store import ListingStore
from skillsupply.utils import sanitize_text, utcnow

logger = logging.getLogger(__name__)


def _clean_message(message: str) -> str:
    clean = sanitize_text(message or "")
    if not clean:
        raise ValidationError("Bid message must not be empty")
    return clean


def _require_bid(listing: Listing, bid_id: int) -> Bid:
    bid = listing.get_bid(bid_id)
    if bid is None:
        raise NotFound(f"Bid {bid_id} not found on listing {listing.id}")
    return bid


def _require_pending_author(listing: Listing, bid_id: int, acting_identity: str) -> Bid:
    bid = _require_bid(listing, bid_id)
    if bid.bidder_identity != acting_identity:
        raise Unauthorized("Only the bid author can change this bid")
    if bid.status != BidStatus.PENDING:
        raise InvalidState(f"Bid {bid_id} is {bid.status}, expected pending")
    return bid


def submit_bid(db: Session, listing_id: int, bidder_identity: str, message: str) -> Bid:
    """Append a pending bid to an open listing.

    Raises:
        NotFound: Listing does not exist.
        InvalidState: Listing is not open or already has a counterpart.
        DuplicateBid: Bidder already has a non-rejected bid here.
        ValidationError: Empty message, or the owner bidding on their own listing.
    """
    def _submit(listing: Listing) -> Bid:
        if listing.counterpart_identity:
            raise InvalidState(f"Listing {listing.id} already has a selected counterpart")
        if bidder_identity == listing.owner_identity:
            raise ValidationError("Owners cannot bid on their own listing")
        if listing.active_bid_for(bidder_identity):
            raise DuplicateBid(f"{bidder_identity} already has an active bid on listing {listing.id}")
        clean = _clean_message(message)
        now = utcnow()
        bid = Bid(
            bidder_identity=bidder_identity,
            message=clean,
            status=BidStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        listing.bids.append(bid)
        return bid

    _, bid = ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _submit)
    logger.info("Bid #%s submitted on listing #%s by %s", bid.id, listing_id, bidder_identity)
    return bid


def edit_bid(db: Session, listing_id: int, bid_id: int, acting_identity: str, message: str) -> Bid:
    def _edit(listing: Listing) -> Bid:
        bid = _require_pending_author(listing, bid_id, acting_identity)
        bid.message = _clean_message(message)
        bid.updated_at = utcnow()
        return bid

    _, bid = ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _edit)
    return bid


def withdraw_bid(db: Session, listing_id: int, bid_id: int, acting_identity: str) -> None:
    """Remove a pending bid entirely."""
    def _withdraw(listing: Listing) -> None:
        bid = _require_pending_author(listing, bid_id, acting_identity)
        listing.bids.remove(bid)

    ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _withdraw)
    logger.info("Bid #%s withdrawn from listing #%s", bid_id, listing_id)


def accept_bid(db: Session, listing_id: int, bid_id: int, acting_identity: str) -> Listing:
    """Accept one bid and reject the other pending ones.

    The bidder becomes the counterpart. A free listing moves straight to
    ``in_progress``; a paid one stays ``open`` until the escrow is funded.

    Raises:
        NotFound: Listing or bid does not exist.
        Unauthorized: Acting identity is not the owner.
        InvalidState: Listing not open, counterpart already chosen, or bid not pending.
    """
    def _accept(listing: Listing) -> None:
        if acting_identity != listing.owner_identity:
            raise Unauthorized("Only the listing owner can accept bids")
        if listing.counterpart_identity:
            raise InvalidState(f"Listing {listing.id} already has a selected counterpart")
        bid = _require_bid(listing, bid_id)
        if bid.status != BidStatus.PENDING:
            raise InvalidState(f"Bid {bid_id} is {bid.status}, expected pending")

        now = utcnow()
        for other in listing.bids:
            if other.id != bid.id and other.status == BidStatus.PENDING:
                other.status = BidStatus.REJECTED
                other.updated_at = now
        bid.status = BidStatus.ACCEPTED
        bid.updated_at = now

        select_counterpart(listing, bid.bidder_identity)
        if not requires_funding(listing):
            start_work(listing)

    listing, _ = ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _accept)
    logger.info(
        "Bid #%s accepted on listing #%s: counterpart=%s status=%s",
        bid_id, listing_id, listing.counterpart_identity, listing.status,
    )
    return listing
