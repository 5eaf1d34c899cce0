"""Ratings and user profiles.

Average ratings are never updated incrementally. After each new rating the
ratee's average is re-derived from every rating they received on completed
listings, so the stored value always equals the mean of that history.
"""
import logging
from typing import Optional

from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillsupply.constants import MAX_SCORE, MIN_SCORE
from skillsupply.errors import DuplicateRating, InvalidState, Unauthorized, ValidationError
from skillsupply.models import Listing, ListingStatus, Rating, UserProfile
from skillsupply.store import ListingStore
from skillsupply.utils import default_display_name, sanitize_text, utcnow

logger = logging.getLogger(__name__)


# --------------- Profiles ---------------


def ensure_profile(db: Session, identity: str) -> UserProfile:
    """Get or create the profile for ``identity``."""
    profile = db.query(UserProfile).filter(UserProfile.identity == identity).first()
    if profile:
        return profile

    now = utcnow()
    profile = UserProfile(
        identity=identity,
        display_name=default_display_name(identity),
        completed_jobs=0,
        average_rating=0.0,
        rating_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request.
        db.rollback()
        return db.query(UserProfile).filter(UserProfile.identity == identity).one()
    db.refresh(profile)
    return profile


def update_display_name(db: Session, identity: str, display_name: str) -> UserProfile:
    name = sanitize_text(display_name)
    if not name:
        raise ValidationError("display_name must not be empty")
    profile = ensure_profile(db, identity)
    profile.display_name = name
    profile.updated_at = utcnow()
    db.commit()
    db.refresh(profile)
    return profile


def increment_completed_jobs(db: Session, identities: list[str]) -> None:
    """Bump completed-job counters inside the caller's transaction."""
    db.execute(
        update(UserProfile)
        .where(UserProfile.identity.in_(identities))
        .values(completed_jobs=UserProfile.completed_jobs + 1, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )


def _recompute(db: Session, identity: str) -> UserProfile:
    profile = db.execute(
        select(UserProfile).where(UserProfile.identity == identity).with_for_update()
    ).scalar_one()

    count, total = (
        db.query(func.count(Rating.id), func.coalesce(func.sum(Rating.score), 0))
        .join(Listing, Rating.listing_id == Listing.id)
        .filter(Rating.ratee_identity == identity, Listing.status == ListingStatus.COMPLETED)
        .one()
    )
    profile.rating_count = int(count)
    profile.average_rating = float(total) / count if count else 0.0
    profile.updated_at = utcnow()
    return profile


def recompute_profile(db: Session, identity: str) -> UserProfile:
    """Re-derive a profile's average rating from its full history and persist it."""
    ensure_profile(db, identity)
    try:
        profile = _recompute(db, identity)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(profile)
    return profile


# --------------- Ratings ---------------


def submit_rating(
    db: Session,
    listing_id: int,
    rater_identity: str,
    score: int,
    review: Optional[str] = None,
) -> Rating:
    """Rate the other participant of a completed listing.

    Args:
        db: Database session.
        listing_id: The completed listing.
        rater_identity: Owner or counterpart leaving the rating.
        score: Integer score in [1, 5].
        review: Optional free text.

    Returns:
        The stored rating.

    Raises:
        NotFound: Listing does not exist.
        InvalidState: Listing is not completed.
        Unauthorized: Rater did not take part in the listing.
        DuplicateRating: Rater already rated this listing.
        ValidationError: Score out of range.
    """
    store = ListingStore(db)
    listing = store.get(listing_id)
    if ListingStatus(listing.status) != ListingStatus.COMPLETED:
        raise InvalidState(f"Listing {listing_id} is {listing.status}; only completed listings can be rated")
    if not listing.is_participant(rater_identity):
        raise Unauthorized("Only the owner or the counterpart can rate this listing")
    if listing.rating_by(rater_identity):
        raise DuplicateRating(f"{rater_identity} already rated listing {listing_id}")
    if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(f"score must be an integer between {MIN_SCORE} and {MAX_SCORE}")

    ratee = listing.other_party(rater_identity)
    ensure_profile(db, ratee)
    clean_review = sanitize_text(review) if review else None

    def _rate(listing: Listing) -> Rating:
        if listing.rating_by(rater_identity):
            raise DuplicateRating(f"{rater_identity} already rated listing {listing_id}")
        rating = Rating(
            rater_identity=rater_identity,
            ratee_identity=ratee,
            score=score,
            review=clean_review,
            created_at=utcnow(),
        )
        listing.ratings.append(rating)
        db.flush()
        _recompute(db, ratee)
        return rating

    try:
        _, rating = store.conditional_update(listing_id, ListingStatus.COMPLETED, _rate)
    except IntegrityError as e:
        raise DuplicateRating(f"{rater_identity} already rated listing {listing_id}") from e

    logger.info("Listing #%s rated %s by %s for %s", listing_id, score, rater_identity, ratee)
    return rating


def list_ratings_received(db: Session, identity: str, limit: int = 50, offset: int = 0) -> tuple[list[Rating], int]:
    query = db.query(Rating).filter(Rating.ratee_identity == identity)
    total = query.count()
    ratings = query.order_by(desc(Rating.created_at), desc(Rating.id)).offset(offset).limit(limit).all()
    return ratings, total
