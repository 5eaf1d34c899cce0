"""Business logic for the listing lifecycle."""
from skillsupply.services.bid_service import accept_bid, edit_bid, submit_bid, withdraw_bid
from skillsupply.services.completion_service import ConfirmationOutcome, confirm_completion
from skillsupply.services.escrow_service import fund_and_hire, release_escrow, required_deposit
from skillsupply.services.listing_service import (
    cancel_listing,
    create_listing,
    delete_listing,
    get_listing,
    get_platform_stats,
    list_listings,
    update_listing,
)
from skillsupply.services.rating_service import (
    ensure_profile,
    recompute_profile,
    submit_rating,
)

__all__ = [
    "accept_bid",
    "edit_bid",
    "submit_bid",
    "withdraw_bid",
    "ConfirmationOutcome",
    "confirm_completion",
    "fund_and_hire",
    "release_escrow",
    "required_deposit",
    "cancel_listing",
    "create_listing",
    "delete_listing",
    "get_listing",
    "get_platform_stats",
    "list_listings",
    "update_listing",
    "ensure_profile",
    "recompute_profile",
    "submit_rating",
]
