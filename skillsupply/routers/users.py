"""API routes for user profiles, reputation and message inboxes."""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from skillsupply.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from skillsupply.database import get_db
from skillsupply.models import ListingStatus
from skillsupply.schemas import (
    EnvelopedListingList,
    EnvelopedRatingList,
    ListingResponse,
    MessageInbox,
    MessageResponse,
    PaginationMeta,
    RatingResponse,
    UserProfileResponse,
    UserProfileUpdate,
)
from skillsupply.services import ensure_profile, list_listings
from skillsupply.services.message_service import list_inbox, mark_read
from skillsupply.services.rating_service import list_ratings_received, update_display_name

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/{identity}", response_model=UserProfileResponse, summary="Get a user profile")
def get_profile(identity: str, db: Session = Depends(get_db)) -> Any:
    """Profiles are created on first sight, so any identity resolves."""
    return ensure_profile(db, identity)


@router.put("/{identity}", response_model=UserProfileResponse, summary="Set a display name")
def update_profile(identity: str, profile_update: UserProfileUpdate, db: Session = Depends(get_db)) -> Any:
    return update_display_name(db, identity, profile_update.display_name)


@router.get("/{identity}/listings", response_model=EnvelopedListingList, summary="Listings a user takes part in")
def user_listings(
    identity: str,
    status: Optional[ListingStatus] = None,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    listings, total = list_listings(db, participant=identity, status=status, limit=limit, offset=offset)
    return {
        "data": [ListingResponse.model_validate(item) for item in listings],
        "meta": PaginationMeta(total=total, page=(offset // limit) + 1, per_page=limit),
    }


@router.get("/{identity}/ratings", response_model=EnvelopedRatingList, summary="Ratings a user received")
def user_ratings(
    identity: str,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    ratings, total = list_ratings_received(db, identity, limit=limit, offset=offset)
    return {
        "data": [RatingResponse.model_validate(r) for r in ratings],
        "meta": PaginationMeta(total=total, page=(offset // limit) + 1, per_page=limit),
    }


@router.get("/{identity}/messages", response_model=MessageInbox, summary="A user's message inbox")
def user_inbox(
    identity: str,
    unread_only: bool = False,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Messages sent by or addressed to the user across all listings, newest first."""
    messages, total, unread = list_inbox(db, identity, unread_only=unread_only, limit=limit, offset=offset)
    return {
        "data": [MessageResponse.model_validate(m) for m in messages],
        "meta": PaginationMeta(total=total, page=(offset // limit) + 1, per_page=limit),
        "unread_count": unread,
    }


@router.post("/{identity}/messages/{message_id}/read", response_model=MessageResponse, summary="Mark a message read")
def mark_message_read(identity: str, message_id: int, db: Session = Depends(get_db)) -> Any:
    return mark_read(db, message_id, identity)
