"""Per-listing message threads, read by bounded polling.

There is no push channel. Clients pull ``list_messages(since=...)`` every
``MESSAGE_POLL_INTERVAL_SECONDS`` and receive at most
``MAX_MESSAGES_PER_POLL`` messages per pull, oldest first.

Each message may also be addressed to one party, which puts it in that
party's inbox until they mark it read.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from skillsupply.constants import MAX_MESSAGE_LENGTH, MAX_MESSAGES_PER_POLL
from skillsupply.errors import InvalidState, NotFound, Unauthorized, ValidationError
from skillsupply.models import Listing, ListingStatus, Message
from skillsupply.store import ListingStore
from skillsupply.utils import sanitize_text, utcnow

logger = logging.getLogger(__name__)


def can_message(listing: Listing, identity: str) -> bool:
    """Participants and anyone with an active bid may use the thread."""
    return listing.is_participant(identity) or listing.active_bid_for(identity) is not None


def _resolve_recipient(listing: Listing, sender: str, recipient: Optional[str]) -> Optional[str]:
    """Owner messages go to the counterpart, everyone else's to the owner."""
    if not recipient:
        if sender == listing.owner_identity:
            return listing.counterpart_identity
        return listing.owner_identity
    if recipient == sender:
        raise ValidationError("Cannot send a message to yourself")
    if listing.owner_identity not in (sender, recipient):
        raise ValidationError("Messages must be to or from the listing owner")
    if not can_message(listing, recipient):
        raise ValidationError(f"{recipient} is not taking part in listing {listing.id}")
    return recipient


def post_message(
    db: Session,
    listing_id: int,
    sender_identity: str,
    content: str,
    recipient_identity: Optional[str] = None,
) -> Message:
    listing = ListingStore(db).get(listing_id)
    if ListingStatus(listing.status) == ListingStatus.CANCELLED:
        raise InvalidState(f"Listing {listing_id} is cancelled")
    if not can_message(listing, sender_identity):
        raise Unauthorized("Only participants and bidders can message on this listing")
    clean = sanitize_text(content or "")
    if not clean:
        raise ValidationError("Message must not be empty")
    if len(clean) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    recipient = _resolve_recipient(listing, sender_identity, (recipient_identity or "").strip())

    message = Message(
        listing_id=listing.id,
        sender_identity=sender_identity,
        recipient_identity=recipient,
        content=clean,
        read=False,
        created_at=utcnow(),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def list_messages(
    db: Session,
    listing_id: int,
    identity: str,
    since: Optional[datetime] = None,
    limit: int = MAX_MESSAGES_PER_POLL,
) -> list[Message]:
    """Messages after ``since`` (exclusive), oldest first."""
    listing = ListingStore(db).get(listing_id)
    if not can_message(listing, identity):
        raise Unauthorized("Only participants and bidders can read this thread")

    query = db.query(Message).filter(Message.listing_id == listing_id)
    if since is not None:
        query = query.filter(Message.created_at > since)
    limit = max(1, min(limit, MAX_MESSAGES_PER_POLL))
    return query.order_by(Message.created_at, Message.id).limit(limit).all()


def list_inbox(
    db: Session,
    identity: str,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Message], int, int]:
    """Messages sent by or addressed to ``identity``, newest first.

    Returns:
        Tuple of (page of messages, total matching count, unread count).
    """
    if unread_only:
        query = db.query(Message).filter(Message.recipient_identity == identity, Message.read.is_(False))
    else:
        query = db.query(Message).filter(
            or_(Message.sender_identity == identity, Message.recipient_identity == identity)
        )
    total = query.count()
    unread = (
        db.query(Message)
        .filter(Message.recipient_identity == identity, Message.read.is_(False))
        .count()
    )
    messages = query.order_by(desc(Message.created_at), desc(Message.id)).offset(offset).limit(limit).all()
    return messages, total, unread


def mark_read(db: Session, message_id: int, acting_identity: str) -> Message:
    """Mark a message read. Only its recipient may; repeating is a no-op."""
    message = db.get(Message, message_id)
    if message is None:
        raise NotFound(f"Message {message_id} not found")
    if message.recipient_identity != acting_identity:
        raise Unauthorized("Only the recipient can mark a message as read")
    if not message.read:
        message.read = True
        db.commit()
        db.refresh(message)
    return message
