"""HTTP route handlers."""
from skillsupply.routers import bids, listings, messages, misc, problems, users

__all__ = [
    "bids",
    "listings",
    "messages",
    "misc",
    "problems",
    "users",
]
