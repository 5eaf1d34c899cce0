"""Shared business logic for listing operations."""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.orm import Session

from skillsupply.constants import (
    CURRENCY,
    MAX_AMOUNT,
    MAX_DESCRIPTION_LENGTH,
    MAX_IDENTITY_LENGTH,
    MAX_TITLE_LENGTH,
    MIN_TITLE_LENGTH,
    VALID_CATEGORIES,
)
from skillsupply.errors import InvalidState, Unauthorized, ValidationError
from skillsupply.models import (
    BidStatus,
    EscrowStatus,
    Listing,
    ListingCategory,
    ListingKind,
    ListingStatus,
)
from skillsupply.services.rating_service import ensure_profile
from skillsupply.store import ListingStore
from skillsupply.utils import quantize_amount, sanitize_text, utcnow

logger = logging.getLogger(__name__)


# --------------- Validation ---------------


def _validate_identity(identity: Optional[str], field: str) -> str:
    value = (identity or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    if len(value) > MAX_IDENTITY_LENGTH:
        raise ValidationError(f"{field} must be at most {MAX_IDENTITY_LENGTH} characters")
    return value


def _validate_title(title: Optional[str]) -> str:
    clean = sanitize_text(title or "")
    if not MIN_TITLE_LENGTH <= len(clean) <= MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be {MIN_TITLE_LENGTH}-{MAX_TITLE_LENGTH} characters")
    return clean


def _validate_description(description: Optional[str]) -> str:
    clean = sanitize_text(description or "")
    if not clean:
        raise ValidationError("description must not be empty")
    if len(clean) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return clean


def _validate_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValidationError("amount must be a non-negative number")
    if value > Decimal(MAX_AMOUNT):
        raise ValidationError(f"amount must be at most {MAX_AMOUNT} {CURRENCY}")
    return quantize_amount(value)


def _validate_category(category: Optional[str]) -> str:
    value = (category or ListingCategory.OTHER.value)
    value = value.value if isinstance(value, ListingCategory) else str(value).lower()
    if value not in VALID_CATEGORIES:
        raise ValidationError(f"Invalid category '{category}'. Must be one of: {', '.join(sorted(VALID_CATEGORIES))}")
    return value


def _validate_kind(kind: Any) -> ListingKind:
    try:
        return ListingKind(kind)
    except ValueError:
        raise ValidationError(f"Invalid kind '{kind}'. Must be 'offer' or 'request'")


# --------------- Listing CRUD ---------------


def build_listing(
    *,
    owner_identity: str,
    kind: str,
    title: str,
    description: str,
    amount: Any,
    category: Optional[str] = None,
) -> Listing:
    """Construct a new open listing with every field set and validated."""
    now = utcnow()
    return Listing(
        owner_identity=_validate_identity(owner_identity, "owner_identity"),
        counterpart_identity=None,
        kind=_validate_kind(kind),
        title=_validate_title(title),
        description=_validate_description(description),
        category=_validate_category(category),
        amount=_validate_amount(amount),
        currency=CURRENCY,
        status=ListingStatus.OPEN,
        escrow_status=EscrowStatus.NOT_FUNDED,
        escrow_tx_ref=None,
        escrow_funded_at=None,
        escrow_released_at=None,
        owner_confirmed=False,
        counterpart_confirmed=False,
        completed_at=None,
        created_at=now,
        updated_at=now,
    )


def create_listing(db: Session, **fields: Any) -> Listing:
    """Validate and persist a new listing.

    Args:
        db: Database session.
        **fields: Keyword arguments accepted by :func:`build_listing`.

    Returns:
        The created listing.
    """
    listing = ListingStore(db).create(build_listing(**fields))
    ensure_profile(db, listing.owner_identity)
    logger.info(
        "Listing #%s created: kind=%s amount=%s owner=%s",
        listing.id, listing.kind, listing.amount, listing.owner_identity,
    )
    return listing


def get_listing(db: Session, listing_id: int) -> Listing:
    return ListingStore(db).get(listing_id)


def list_listings(db: Session, **filters: Any) -> tuple[list[Listing], int]:
    return ListingStore(db).query(**filters)


def update_listing(
    db: Session,
    listing_id: int,
    acting_identity: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    amount: Any = None,
    category: Optional[str] = None,
) -> Listing:
    """Edit an open listing's terms. Owner only, and only before a counterpart is chosen."""
    changes: dict[str, Any] = {}
    if title is not None:
        changes["title"] = _validate_title(title)
    if description is not None:
        changes["description"] = _validate_description(description)
    if amount is not None:
        changes["amount"] = _validate_amount(amount)
    if category is not None:
        changes["category"] = _validate_category(category)

    def _update(listing: Listing) -> None:
        if acting_identity != listing.owner_identity:
            raise Unauthorized("Only the listing owner can update it")
        if listing.counterpart_identity:
            raise InvalidState(f"Listing {listing.id} terms are locked once a counterpart is selected")
        for key, value in changes.items():
            setattr(listing, key, value)

    listing, _ = ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _update)
    return listing


def cancel_listing(db: Session, listing_id: int, acting_identity: str) -> Listing:
    """Owner cancels an open listing; pending bids are rejected."""
    def _cancel(listing: Listing) -> None:
        if acting_identity != listing.owner_identity:
            raise Unauthorized("Only the listing owner can cancel it")
        now = utcnow()
        for bid in listing.bids:
            if bid.status == BidStatus.PENDING:
                bid.status = BidStatus.REJECTED
                bid.updated_at = now
        listing.status = ListingStatus.CANCELLED

    listing, _ = ListingStore(db).conditional_update(listing_id, ListingStatus.OPEN, _cancel)
    logger.info("Listing #%s cancelled by owner", listing_id)
    return listing


def delete_listing(db: Session, listing_id: int, acting_identity: str) -> None:
    """Physically delete an open listing with its bids and messages."""
    store = ListingStore(db)
    listing = store.get(listing_id)
    if acting_identity != listing.owner_identity:
        raise Unauthorized("Only the listing owner can delete it")
    if ListingStatus(listing.status) != ListingStatus.OPEN:
        raise InvalidState(f"Listing {listing_id} is {listing.status}; only open listings can be deleted")
    if listing.escrow_status != EscrowStatus.NOT_FUNDED:
        raise InvalidState(f"Listing {listing_id} has escrowed funds")
    store.delete(listing)
    logger.info("Listing #%s deleted by owner", listing_id)


def get_platform_stats(db: Session) -> dict[str, int]:
    """Get listing counts per status."""
    stats = {"total_listings": db.query(Listing).count()}
    for status in ListingStatus:
        stats[f"{status.value}_listings"] = db.query(Listing).filter(Listing.status == status).count()
    return stats
