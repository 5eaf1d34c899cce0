"""Per-listing message threads, consumed by polling."""
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from skillsupply.constants import MAX_MESSAGES_PER_POLL, MESSAGE_POLL_INTERVAL_SECONDS, MESSAGE_RATE_LIMIT
from skillsupply.database import get_db
from skillsupply.middleware import limiter
from skillsupply.schemas import MessageCreate, MessageList, MessageResponse
from skillsupply.services.message_service import list_messages, post_message
from skillsupply.utils import utcnow

router = APIRouter(prefix="/api/v1/listings/{listing_id}/messages", tags=["messages"])


@router.get(
    "/",
    response_model=MessageList,
    summary="Poll a listing's messages",
    description=(
        f"Returns messages newer than `since`, oldest first, at most {MAX_MESSAGES_PER_POLL} per call. "
        f"Clients should poll every {MESSAGE_POLL_INTERVAL_SECONDS} seconds."
    ),
)
def poll_messages(
    listing_id: int,
    identity: str = Query(..., min_length=1),
    since: Optional[datetime] = None,
    limit: int = Query(default=MAX_MESSAGES_PER_POLL, ge=1, le=MAX_MESSAGES_PER_POLL),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if since is not None:
        # Naive timestamps are UTC, matching what this API returns.
        since = since.replace(tzinfo=timezone.utc) if since.tzinfo is None else since.astimezone(timezone.utc)
    messages = list_messages(db, listing_id, identity, since=since, limit=limit)
    return {
        "messages": [MessageResponse.model_validate(m) for m in messages],
        "poll_interval_seconds": MESSAGE_POLL_INTERVAL_SECONDS,
        "server_time": utcnow(),
    }


@router.post("/", response_model=MessageResponse, status_code=201, summary="Post a message")
@limiter.limit(MESSAGE_RATE_LIMIT)
def create_message(request: Request, listing_id: int, message: MessageCreate, db: Session = Depends(get_db)) -> Any:
    return post_message(db, listing_id, message.sender_identity, message.content, message.recipient_identity)
