"""API routes for the listing lifecycle: CRUD, hire, completion and rating."""
import hashlib
import logging
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from skillsupply.constants import (
    CREATE_LISTING_RATE_LIMIT,
    DEFAULT_PAGE_SIZE,
    HIRE_RATE_LIMIT,
    MAX_PAGE_SIZE,
)
from skillsupply.database import get_db
from skillsupply.middleware import limiter
from skillsupply.models import Listing, ListingCategory, ListingKind, ListingStatus
from skillsupply.payments import PaymentRail, get_payment_rail
from skillsupply.schemas import (
    ConfirmationResponse,
    EnvelopedListingList,
    HireRequest,
    ListingAction,
    ListingCreate,
    ListingResponse,
    ListingUpdate,
    PaginationMeta,
    RatingCreate,
    RatingResponse,
)
from skillsupply.services import (
    ConfirmationOutcome,
    cancel_listing as svc_cancel_listing,
    confirm_completion,
    create_listing as svc_create_listing,
    delete_listing as svc_delete_listing,
    fund_and_hire,
    get_listing as svc_get_listing,
    list_listings as svc_list_listings,
    submit_rating,
    update_listing as svc_update_listing,
)

router = APIRouter(prefix="/api/v1/listings", tags=["listings"])
logger = logging.getLogger(__name__)

_OUTCOME_MESSAGES = {
    ConfirmationOutcome.WAITING: "Confirmation recorded. Waiting for the other party.",
    ConfirmationOutcome.COMPLETED: "Both parties confirmed. Listing completed and escrow released.",
    ConfirmationOutcome.ALREADY_CONFIRMED: "You have already confirmed this listing.",
}


def listing_etag(listing: Listing) -> str:
    """ETag derived from the listing row version."""
    return hashlib.sha256(f"{listing.id}-{listing.version}".encode()).hexdigest()


@router.post(
    "/",
    response_model=ListingResponse,
    status_code=201,
    summary="Create a listing",
    description="Advertise a skill (`offer`) or post a need (`request`).",
)
@limiter.limit(CREATE_LISTING_RATE_LIMIT)
def create_listing(request: Request, listing: ListingCreate, db: Session = Depends(get_db)) -> Listing:
    """Create a new open listing."""
    return svc_create_listing(
        db,
        owner_identity=listing.owner_identity,
        kind=listing.kind,
        title=listing.title,
        description=listing.description,
        amount=listing.amount,
        category=listing.category,
    )


@router.get(
    "/",
    response_model=EnvelopedListingList,
    summary="List listings",
    description="List listings with optional filters. Returns paginated results.",
)
def list_listings(
    request: Request,
    owner: Optional[str] = None,
    counterpart: Optional[str] = None,
    participant: Optional[str] = None,
    status: Optional[ListingStatus] = None,
    kind: Optional[ListingKind] = None,
    category: Optional[ListingCategory] = None,
    search: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    sort: str = Query(default="newest", pattern="^(newest|oldest|amount_asc|amount_desc)$"),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """List listings with optional filters.

    Args:
        request: The incoming request.
        owner: Only listings owned by this identity.
        counterpart: Only listings where this identity was hired.
        participant: Listings where this identity is owner or counterpart.
        status: Filter by lifecycle status.
        kind: ``offer`` or ``request``.
        category: Filter by category.
        search: Case-insensitive match on title and description.
        min_amount: Minimum amount filter.
        max_amount: Maximum amount filter.
        sort: Ordering key.
        limit: Max results per page.
        offset: Offset for pagination.
        db: Database session.

    Returns:
        Enveloped listing list with pagination metadata.
    """
    listings, total = svc_list_listings(
        db,
        owner=owner,
        counterpart=counterpart,
        participant=participant,
        status=status,
        kind=kind,
        category=category,
        search=search,
        min_amount=min_amount,
        max_amount=max_amount,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    page = (offset // limit) + 1
    return {
        "data": [ListingResponse.model_validate(item) for item in listings],
        "meta": PaginationMeta(total=total, page=page, per_page=limit),
    }


@router.get(
    "/{listing_id}",
    response_model=ListingResponse,
    summary="Get listing by ID",
    description="Get a listing with its bids, escrow and completion state. Includes ETag for caching.",
)
def get_listing(listing_id: int, request: Request, db: Session = Depends(get_db)) -> Any:
    """Get a specific listing by ID with ETag support."""
    listing = svc_get_listing(db, listing_id)
    etag = listing_etag(listing)

    if_none_match = request.headers.get("If-None-Match")
    if if_none_match and if_none_match.strip('"') == etag:
        return Response(status_code=304, headers={"ETag": f'"{etag}"'})
    return JSONResponse(
        content=ListingResponse.model_validate(listing).model_dump(mode="json"),
        headers={"ETag": f'"{etag}"'},
    )


@router.put("/{listing_id}", response_model=ListingResponse, summary="Update an open listing")
def update_listing(listing_id: int, listing_update: ListingUpdate, db: Session = Depends(get_db)) -> Listing:
    return svc_update_listing(
        db,
        listing_id,
        listing_update.acting_identity,
        title=listing_update.title,
        description=listing_update.description,
        amount=listing_update.amount,
        category=listing_update.category,
    )


@router.post("/{listing_id}/cancel", response_model=ListingResponse, summary="Cancel an open listing")
def cancel_listing(listing_id: int, action: ListingAction, db: Session = Depends(get_db)) -> Listing:
    return svc_cancel_listing(db, listing_id, action.acting_identity)


@router.delete("/{listing_id}", summary="Delete an open, unfunded listing")
def delete_listing(listing_id: int, action: ListingAction, db: Session = Depends(get_db)) -> dict[str, str]:
    svc_delete_listing(db, listing_id, action.acting_identity)
    return {"message": "Listing deleted"}


@router.post(
    "/{listing_id}/hire",
    response_model=ListingResponse,
    summary="Fund escrow and hire",
    description=(
        "Verify the escrow deposit referenced by `external_tx_ref` with the payment rail, "
        "then select the counterpart and start work. Free listings need no reference."
    ),
)
@limiter.limit(HIRE_RATE_LIMIT)
def hire(
    request: Request,
    listing_id: int,
    hire_request: HireRequest,
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
) -> Listing:
    return fund_and_hire(
        db, rail, listing_id, hire_request.counterpart_identity, hire_request.external_tx_ref
    )


@router.post(
    "/{listing_id}/confirm",
    response_model=ConfirmationResponse,
    summary="Confirm completion",
    description="Owner or counterpart confirms the work is done. The second confirmation releases escrow.",
)
def confirm(
    listing_id: int,
    action: ListingAction,
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
) -> ConfirmationResponse:
    listing, outcome = confirm_completion(db, rail, listing_id, action.acting_identity)
    return ConfirmationResponse(
        outcome=outcome.value,
        message=_OUTCOME_MESSAGES[outcome],
        listing=ListingResponse.model_validate(listing),
    )


@router.post(
    "/{listing_id}/rate",
    response_model=RatingResponse,
    status_code=201,
    summary="Rate the other participant",
)
def rate(listing_id: int, rating: RatingCreate, db: Session = Depends(get_db)) -> Any:
    return submit_rating(db, listing_id, rating.rater_identity, rating.score, rating.review)
