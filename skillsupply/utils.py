"""Utility functions for SkillSupply."""
import html
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from skillsupply.constants import AMOUNT_PLACES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """
    Sanitize user input by stripping HTML tags and escaping special characters.
    Returns None if input is None.
    """
    if value is None:
        return None
    # Strip HTML tags
    clean = re.sub(r"<[^>]+>", "", value)
    # Escape remaining HTML entities
    clean = html.escape(clean, quote=True)
    # Collapse excessive whitespace
    clean = re.sub(r"\s+", " ", clean).strip()
    return clean


def quantize_amount(value: Decimal) -> Decimal:
    """Round a USDC amount to the stored precision."""
    return Decimal(value).quantize(Decimal(AMOUNT_PLACES), rounding=ROUND_HALF_UP)


def default_display_name(identity: str) -> str:
    """Shortened wallet address used until a profile sets its own name."""
    return identity[:8] + "..."
