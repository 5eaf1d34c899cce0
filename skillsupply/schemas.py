"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from skillsupply.constants import (
    MAX_AMOUNT,
    MAX_BID_MESSAGE_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_DISPLAY_NAME_LENGTH,
    MAX_IDENTITY_LENGTH,
    MAX_MESSAGE_LENGTH,
    MAX_REVIEW_LENGTH,
    MAX_SCORE,
    MAX_TITLE_LENGTH,
    MAX_TX_REF_LENGTH,
    MIN_SCORE,
    MIN_TITLE_LENGTH,
)
from skillsupply.models import ListingCategory, ListingKind, VoteDirection

WALLET_EXAMPLE = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


# Listing schemas


class ListingCreate(BaseModel):
    """Schema for creating a new listing."""

    owner_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH, examples=[WALLET_EXAMPLE])
    kind: ListingKind = Field(..., examples=["offer"])
    title: str = Field(..., min_length=MIN_TITLE_LENGTH, max_length=MAX_TITLE_LENGTH, examples=["Logo design"])
    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH, examples=["Vector logo in three drafts"])
    amount: Decimal = Field(..., ge=0, le=Decimal(MAX_AMOUNT), description="Price in USDC", examples=["10"])
    category: ListingCategory = Field(default=ListingCategory.OTHER, examples=["design"])


class ListingUpdate(BaseModel):
    """Used when the owner edits an open listing."""

    acting_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    title: Optional[str] = Field(None, min_length=MIN_TITLE_LENGTH, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    amount: Optional[Decimal] = Field(None, ge=0, le=Decimal(MAX_AMOUNT))
    category: Optional[ListingCategory] = None


class ListingAction(BaseModel):
    """Body for owner/participant actions that carry no other data (cancel, delete, confirm)."""

    acting_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH, examples=[WALLET_EXAMPLE])


class HireRequest(BaseModel):
    """Direct hire, or funding the hire of an accepted bidder."""

    counterpart_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    external_tx_ref: Optional[str] = Field(
        None, max_length=MAX_TX_REF_LENGTH, description="Escrow deposit transaction; required when amount > 0"
    )


class RatingCreate(BaseModel):
    rater_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    score: int = Field(..., ge=MIN_SCORE, le=MAX_SCORE, examples=[5])
    review: Optional[str] = Field(None, max_length=MAX_REVIEW_LENGTH, examples=["Fast and friendly"])


class EscrowState(BaseModel):
    model_config = {"from_attributes": True}

    status: str = Field(..., examples=["funded"])
    external_tx_ref: Optional[str] = None
    funded_at: Optional[datetime] = None
    released_at: Optional[datetime] = None


class CompletionState(BaseModel):
    model_config = {"from_attributes": True}

    owner_confirmed: bool
    counterpart_confirmed: bool
    completed_at: Optional[datetime] = None


# Bid schemas


class BidCreate(BaseModel):
    bidder_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    message: str = Field(..., min_length=1, max_length=MAX_BID_MESSAGE_LENGTH, examples=["I can deliver in 2 days"])


class BidUpdate(BaseModel):
    acting_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    message: str = Field(..., min_length=1, max_length=MAX_BID_MESSAGE_LENGTH)


class BidResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int = Field(..., examples=[1])
    listing_id: int
    bidder_identity: str
    message: str
    status: str = Field(..., examples=["pending"])
    created_at: datetime
    updated_at: datetime


class RatingResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    listing_id: int
    rater_identity: str
    ratee_identity: str
    score: int
    review: Optional[str] = None
    created_at: datetime


class ListingResponse(BaseModel):
    """Schema for listing responses."""

    model_config = {"from_attributes": True}

    id: int = Field(..., examples=[1])
    owner_identity: str
    counterpart_identity: Optional[str] = None
    kind: str = Field(..., examples=["offer"])
    title: str
    description: str
    category: str = Field(..., examples=["design"])
    amount: Decimal = Field(..., examples=["10.000000"])
    currency: str = Field(..., examples=["USDC"])
    status: str = Field(..., examples=["open"])
    escrow: EscrowState
    completion: CompletionState
    bids: List[BidResponse] = []
    ratings: List[RatingResponse] = []
    version: int
    created_at: datetime
    updated_at: datetime


class ConfirmationResponse(BaseModel):
    """Result of a completion confirmation."""

    outcome: str = Field(..., examples=["waiting"])  # "waiting" | "completed" | "already_confirmed"
    message: str
    listing: ListingResponse


# Pagination metadata


class PaginationMeta(BaseModel):
    """Pagination metadata for list responses."""

    total: int = Field(..., examples=[42])
    page: int = Field(..., examples=[1])
    per_page: int = Field(..., examples=[50])


class EnvelopedListingList(BaseModel):
    """Enveloped response for listing list endpoints."""

    data: List[ListingResponse]
    meta: PaginationMeta


# Messages


class MessageCreate(BaseModel):
    sender_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    recipient_identity: Optional[str] = Field(
        None, max_length=MAX_IDENTITY_LENGTH, description="Defaults to the other side of the listing"
    )


class MessageResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    listing_id: int
    sender_identity: str
    recipient_identity: Optional[str] = None
    content: str
    created_at: datetime
    read: bool


class MessageList(BaseModel):
    """One poll's worth of messages plus the polling contract."""

    messages: List[MessageResponse]
    poll_interval_seconds: int = Field(..., examples=[5])
    server_time: datetime


class MessageInbox(BaseModel):
    data: List[MessageResponse]
    meta: PaginationMeta
    unread_count: int = Field(..., examples=[2])


# Users


class UserProfileResponse(BaseModel):
    model_config = {"from_attributes": True}

    identity: str
    display_name: str
    completed_jobs: int
    average_rating: float
    rating_count: int
    created_at: datetime


class UserProfileUpdate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=MAX_DISPLAY_NAME_LENGTH)


class EnvelopedRatingList(BaseModel):
    data: List[RatingResponse]
    meta: PaginationMeta


# Problems


class ProblemCreate(BaseModel):
    author_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    title: str = Field(..., min_length=MIN_TITLE_LENGTH, max_length=MAX_TITLE_LENGTH)
    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH)


class ProblemUpdate(BaseModel):
    acting_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    title: Optional[str] = Field(None, min_length=MIN_TITLE_LENGTH, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, min_length=1, max_length=MAX_DESCRIPTION_LENGTH)


class ProblemResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    author_identity: str
    title: str
    description: str
    total_votes: int
    created_at: datetime


class EnvelopedProblemList(BaseModel):
    data: List[ProblemResponse]
    meta: PaginationMeta


class VoteRequest(BaseModel):
    voter_identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    direction: VoteDirection


class VoteResponse(BaseModel):
    problem: ProblemResponse
    user_vote: Optional[str] = Field(None, examples=["up"])
