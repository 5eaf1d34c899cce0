"""Miscellaneous routes: health and platform stats."""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from skillsupply.constants import APP_VERSION
from skillsupply.database import get_db
from skillsupply.payments import PaymentRail, get_payment_rail
from skillsupply.services import get_platform_stats

logger = logging.getLogger(__name__)

router = APIRouter(tags=["misc"])


@router.get(
    "/health",
    summary="Health check",
    description="Deep health check: verifies DB connectivity and the payment rail circuit.",
    response_description="Health status with component details.",
)
def health(
    request: Request,
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
) -> dict[str, Any]:
    """Health check endpoint.

    Args:
        request: The incoming request.
        db: Database session.
        rail: Payment rail whose circuit breaker is reported.

    Returns:
        Dict with status, database, and payment_rail information.
    """
    request_id = getattr(request.state, "request_id", "")

    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        db_status = "disconnected"

    breaker = getattr(rail, "breaker", None)
    rail_status = breaker.state.value if breaker is not None else "unknown"

    overall = "healthy"
    if db_status != "connected":
        overall = "degraded"
    elif rail_status == "open":
        overall = "warning"

    return {
        "status": overall,
        "version": APP_VERSION,
        "database": db_status,
        "payment_rail": rail_status,
        "request_id": request_id,
    }


@router.get("/api/v1/stats", summary="Platform statistics")
def stats(db: Session = Depends(get_db)) -> dict[str, int]:
    """Listing counts per status."""
    return get_platform_stats(db)
