"""Listing persistence with optimistic concurrency control.

Every mutation of a listing, including its bids, escrow sub-state and
completion flags, goes through :meth:`ListingStore.conditional_update`. The
mutator runs against a freshly loaded listing, and the commit only succeeds
if the listing row still carries the version that was read. Losing a race
surfaces as :class:`~skillsupply.errors.ConcurrentModification`.
"""
import logging
from typing import Callable, Iterable, Optional, TypeVar, Union

from sqlalchemy import desc, or_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from skillsupply.errors import ConcurrentModification, InvalidState, NotFound
from skillsupply.models import Listing, ListingStatus
from skillsupply.utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lock/serialization conflicts that mean "someone else committed first".
_CONFLICT_PGCODES = {"40001", "40P01", "55P03"}
_CONFLICT_MESSAGES = ("database is locked", "database table is locked")

SORT_ORDERS = {
    "newest": desc(Listing.created_at),
    "oldest": Listing.created_at,
    "amount_asc": Listing.amount,
    "amount_desc": desc(Listing.amount),
}


def _is_lock_conflict(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _CONFLICT_PGCODES:
        return True
    message = str(exc.orig).lower()
    return any(m in message for m in _CONFLICT_MESSAGES)


class ListingStore:
    """Durable listing records bound to one database session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, listing_id: int) -> Listing:
        listing = self.db.get(Listing, listing_id, populate_existing=True)
        if listing is None:
            raise NotFound(f"Listing {listing_id} not found")
        return listing

    def create(self, listing: Listing) -> Listing:
        self.db.add(listing)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(listing)
        return listing

    def delete(self, listing: Listing) -> None:
        self.db.delete(listing)
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModification(listing.id)
        except Exception:
            self.db.rollback()
            raise

    def conditional_update(
        self,
        listing_id: int,
        expected_status: Union[ListingStatus, Iterable[ListingStatus]],
        mutator: Callable[[Listing], T],
        expected_version: Optional[int] = None,
    ) -> tuple[Listing, T]:
        """Apply ``mutator`` to a listing and commit it as one compare-and-set.

        Args:
            listing_id: The listing to mutate.
            expected_status: Status (or statuses) the listing must be in.
            mutator: Callable receiving the loaded listing. It may raise a
                domain error to abort; nothing is committed in that case,
                nor when it leaves the session unchanged.
            expected_version: Optional row version the caller last observed.

        Returns:
            Tuple of (refreshed listing, mutator return value).

        Raises:
            NotFound: Listing does not exist.
            InvalidState: Listing status does not match ``expected_status``.
            ConcurrentModification: Listing changed between read and commit.
        """
        if isinstance(expected_status, ListingStatus):
            expected = [expected_status]
        else:
            expected = list(expected_status)

        listing = self.get(listing_id)
        if expected_version is not None and listing.version != expected_version:
            raise ConcurrentModification(listing_id)
        current = ListingStatus(listing.status)
        if current not in expected:
            raise InvalidState(
                f"Listing {listing_id} is {current.value}, expected "
                + " or ".join(s.value for s in expected)
            )

        try:
            result = mutator(listing)
            if not (self.db.new or self.db.dirty or self.db.deleted):
                # Nothing changed: no version bump, no commit.
                self.db.rollback()
                return listing, result
            listing.updated_at = utcnow()
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("Lost optimistic concurrency race on listing #%s", listing_id)
            raise ConcurrentModification(listing_id)
        except DBAPIError as exc:
            self.db.rollback()
            if _is_lock_conflict(exc):
                logger.warning("Lock conflict on listing #%s: %s", listing_id, exc.orig)
                raise ConcurrentModification(listing_id) from exc
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(listing)
        return listing, result

    def query(
        self,
        *,
        owner: Optional[str] = None,
        counterpart: Optional[str] = None,
        participant: Optional[str] = None,
        status: Optional[ListingStatus] = None,
        kind: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        sort: str = "newest",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Listing], int]:
        """Filter listings.

        Returns:
            Tuple of (page of listings, total matching count).
        """
        query = self.db.query(Listing)
        if owner:
            query = query.filter(Listing.owner_identity == owner)
        if counterpart:
            query = query.filter(Listing.counterpart_identity == counterpart)
        if participant:
            query = query.filter(
                or_(Listing.owner_identity == participant, Listing.counterpart_identity == participant)
            )
        if status:
            query = query.filter(Listing.status == status)
        if kind:
            query = query.filter(Listing.kind == kind)
        if category:
            query = query.filter(Listing.category == category)
        if min_amount is not None:
            query = query.filter(Listing.amount >= min_amount)
        if max_amount is not None:
            query = query.filter(Listing.amount <= max_amount)
        if search:
            search_term = f"%{search}%"
            query = query.filter(
                (Listing.title.ilike(search_term)) | (Listing.description.ilike(search_term))
            )

        total = query.count()
        order = SORT_ORDERS.get(sort, SORT_ORDERS["newest"])
        listings = query.order_by(order, desc(Listing.id)).offset(offset).limit(limit).all()
        return listings, total
