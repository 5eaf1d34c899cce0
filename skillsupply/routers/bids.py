"""API routes for bids on open listings."""
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from skillsupply.constants import BID_RATE_LIMIT
from skillsupply.database import get_db
from skillsupply.middleware import limiter
from skillsupply.schemas import BidCreate, BidResponse, BidUpdate, ListingAction, ListingResponse
from skillsupply.services import accept_bid, edit_bid, submit_bid, withdraw_bid

router = APIRouter(prefix="/api/v1/listings/{listing_id}/bids", tags=["bids"])


@router.post("/", response_model=BidResponse, status_code=201, summary="Bid on an open listing")
@limiter.limit(BID_RATE_LIMIT)
def create_bid(request: Request, listing_id: int, bid: BidCreate, db: Session = Depends(get_db)) -> Any:
    """Submit a pending bid. One active bid per bidder per listing."""
    return submit_bid(db, listing_id, bid.bidder_identity, bid.message)


@router.put("/{bid_id}", response_model=BidResponse, summary="Edit a pending bid")
def update_bid(listing_id: int, bid_id: int, bid_update: BidUpdate, db: Session = Depends(get_db)) -> Any:
    return edit_bid(db, listing_id, bid_id, bid_update.acting_identity, bid_update.message)


@router.delete("/{bid_id}", summary="Withdraw a pending bid")
def delete_bid(listing_id: int, bid_id: int, action: ListingAction, db: Session = Depends(get_db)) -> dict[str, str]:
    withdraw_bid(db, listing_id, bid_id, action.acting_identity)
    return {"message": "Bid withdrawn"}


@router.post(
    "/{bid_id}/accept",
    response_model=ListingResponse,
    summary="Accept a bid",
    description=(
        "Owner accepts one pending bid; the rest are rejected. Free listings start "
        "immediately, paid listings wait for the counterpart to be funded via /hire."
    ),
)
def accept(listing_id: int, bid_id: int, action: ListingAction, db: Session = Depends(get_db)) -> Any:
    return accept_bid(db, listing_id, bid_id, action.acting_identity)
