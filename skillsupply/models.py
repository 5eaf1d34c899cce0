"""SQLAlchemy models for SkillSupply."""
import enum
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from skillsupply.database import Base


class ListingKind(str, enum.Enum):
    """Which side advertised the listing."""
    OFFER = "offer"
    REQUEST = "request"


class ListingCategory(str, enum.Enum):
    DEVELOPMENT = "development"
    DESIGN = "design"
    WRITING = "writing"
    TEACHING = "teaching"
    BUSINESS = "business"
    OTHER = "other"


class ListingStatus(str, enum.Enum):
    """Listing lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EscrowStatus(str, enum.Enum):
    NOT_FUNDED = "not_funded"
    FUNDED = "funded"
    RELEASING = "releasing"
    RELEASED = "released"


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class VoteDirection(str, enum.Enum):
    UP = "up"
    DOWN = "down"


class Listing(Base):
    """A skill offered or a need requested, with its escrow and completion state."""
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    owner_identity = Column(String(100), nullable=False, index=True)
    counterpart_identity = Column(String(100), nullable=True, index=True)

    kind = Column(String(10), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(20), nullable=False, index=True)

    amount = Column(Numeric(18, 6), nullable=False)
    currency = Column(String(10), nullable=False)

    status = Column(String(20), nullable=False, index=True)

    escrow_status = Column(String(20), nullable=False)
    escrow_tx_ref = Column(String(200), nullable=True, unique=True)
    escrow_funded_at = Column(DateTime(timezone=True), nullable=True)
    escrow_released_at = Column(DateTime(timezone=True), nullable=True)

    owner_confirmed = Column(Boolean, nullable=False)
    counterpart_confirmed = Column(Boolean, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Row version for optimistic concurrency: every UPDATE is issued as
    # "... WHERE id = ? AND version = ?" and bumps the counter.
    version = Column(Integer, nullable=False)

    bids = relationship(
        "Bid", back_populates="listing", order_by="Bid.id", cascade="all, delete-orphan"
    )
    ratings = relationship(
        "Rating", back_populates="listing", order_by="Rating.id", cascade="all, delete-orphan"
    )
    messages = relationship(
        "Message", back_populates="listing", order_by="Message.id", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_listings_status_kind", "status", "kind"),
        Index("ix_listings_status_created_at", "status", "created_at"),
    )

    @property
    def escrow(self) -> dict[str, Any]:
        return {
            "status": self.escrow_status,
            "external_tx_ref": self.escrow_tx_ref,
            "funded_at": self.escrow_funded_at,
            "released_at": self.escrow_released_at,
        }

    @property
    def completion(self) -> dict[str, Any]:
        return {
            "owner_confirmed": self.owner_confirmed,
            "counterpart_confirmed": self.counterpart_confirmed,
            "completed_at": self.completed_at,
        }

    def is_participant(self, identity: str) -> bool:
        return identity == self.owner_identity or (
            self.counterpart_identity is not None and identity == self.counterpart_identity
        )

    def other_party(self, identity: str) -> Optional[str]:
        if identity == self.owner_identity:
            return self.counterpart_identity
        if identity == self.counterpart_identity:
            return self.owner_identity
        return None

    @property
    def payee_identity(self) -> Optional[str]:
        """Who receives the escrowed funds on completion."""
        if self.kind == ListingKind.OFFER:
            return self.owner_identity
        return self.counterpart_identity

    def get_bid(self, bid_id: int) -> Optional["Bid"]:
        for bid in self.bids:
            if bid.id == bid_id:
                return bid
        return None

    def active_bid_for(self, bidder_identity: str) -> Optional["Bid"]:
        for bid in self.bids:
            if bid.bidder_identity == bidder_identity and bid.status != BidStatus.REJECTED:
                return bid
        return None

    def rating_by(self, rater_identity: str) -> Optional["Rating"]:
        for rating in self.ratings:
            if rating.rater_identity == rater_identity:
                return rating
        return None


class Bid(Base):
    """A prospective counterpart's offer to fulfill a listing."""
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    bidder_identity = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    listing = relationship("Listing", back_populates="bids")

    __table_args__ = (
        Index("ix_bids_listing_bidder", "listing_id", "bidder_identity"),
    )


class Rating(Base):
    """A score left by one participant of a completed listing for the other."""
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    rater_identity = Column(String(100), nullable=False)
    ratee_identity = Column(String(100), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    listing = relationship("Listing", back_populates="ratings")

    __table_args__ = (
        UniqueConstraint("listing_id", "rater_identity", name="uq_ratings_listing_rater"),
    )


class UserProfile(Base):
    """Per-identity reputation: completed jobs and the derived average rating."""
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    completed_jobs = Column(Integer, nullable=False)
    average_rating = Column(Float, nullable=False)
    rating_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    sender_identity = Column(String(100), nullable=False, index=True)
    # None for notes the owner posts before a counterpart is chosen.
    recipient_identity = Column(String(100), nullable=True)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    listing = relationship("Listing", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_listing_created_at", "listing_id", "created_at"),
        Index("ix_messages_recipient_read", "recipient_identity", "read"),
    )


class Problem(Base):
    """A community-posted problem that others can up- or down-vote."""
    __tablename__ = "problems"

    id = Column(Integer, primary_key=True, index=True)
    author_identity = Column(String(100), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    total_votes = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    votes = relationship("ProblemVote", back_populates="problem", cascade="all, delete-orphan")


class ProblemVote(Base):
    __tablename__ = "problem_votes"

    id = Column(Integer, primary_key=True, index=True)
    problem_id = Column(Integer, ForeignKey("problems.id", ondelete="CASCADE"), nullable=False)
    voter_identity = Column(String(100), nullable=False)
    direction = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    problem = relationship("Problem", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("problem_id", "voter_identity", name="uq_problem_votes_problem_voter"),
    )
