"""Tests for the bid ledger: submit, edit, withdraw, accept."""
import pytest
from fastapi.testclient import TestClient

from skillsupply.errors import DuplicateBid, InvalidState, NotFound, Unauthorized, ValidationError
from skillsupply.models import BidStatus, EscrowStatus, Listing, ListingStatus
from skillsupply.services import accept_bid, edit_bid, get_listing, submit_bid, withdraw_bid
from tests.conftest import create_test_listing, make_in_progress, make_listing, run_concurrently


def test_submit_bid(db) -> None:
    listing = make_listing(db)
    bid = submit_bid(db, listing.id, "bob", "I can deliver in 2 days")
    assert bid.status == BidStatus.PENDING
    assert bid.bidder_identity == "bob"
    assert [b.id for b in get_listing(db, listing.id).bids] == [bid.id]


def test_second_active_bid_is_duplicate(db) -> None:
    listing = make_listing(db)
    submit_bid(db, listing.id, "bob", "First")
    with pytest.raises(DuplicateBid):
        submit_bid(db, listing.id, "bob", "Second")
    assert len(get_listing(db, listing.id).bids) == 1


def test_rebid_after_withdraw(db) -> None:
    listing = make_listing(db)
    bid = submit_bid(db, listing.id, "bob", "First")
    withdraw_bid(db, listing.id, bid.id, "bob")
    again = submit_bid(db, listing.id, "bob", "Second thoughts")
    assert again.status == BidStatus.PENDING


def test_owner_cannot_bid(db) -> None:
    listing = make_listing(db)
    with pytest.raises(ValidationError):
        submit_bid(db, listing.id, "alice", "Hire me")


def test_empty_message_rejected(db) -> None:
    listing = make_listing(db)
    with pytest.raises(ValidationError):
        submit_bid(db, listing.id, "bob", "<p> </p>")


def test_bid_on_missing_listing(db) -> None:
    with pytest.raises(NotFound):
        submit_bid(db, 99999, "bob", "Hello")


def test_bid_on_in_progress_listing(db, rail) -> None:
    listing = make_in_progress(db, rail)
    with pytest.raises(InvalidState):
        submit_bid(db, listing.id, "carol", "Too late?")


def test_edit_bid(db) -> None:
    listing = make_listing(db)
    bid = submit_bid(db, listing.id, "bob", "First draft")
    edited = edit_bid(db, listing.id, bid.id, "bob", "Better offer")
    assert edited.message == "Better offer"
    with pytest.raises(Unauthorized):
        edit_bid(db, listing.id, bid.id, "carol", "Not mine")


def test_withdraw_requires_author(db) -> None:
    listing = make_listing(db)
    bid = submit_bid(db, listing.id, "bob", "Hello")
    with pytest.raises(Unauthorized):
        withdraw_bid(db, listing.id, bid.id, "carol")
    with pytest.raises(NotFound):
        withdraw_bid(db, listing.id, bid.id + 100, "bob")


class TestAcceptBid:
    def test_accept_rejects_others_and_selects_counterpart(self, db) -> None:
        listing = make_listing(db)
        chosen = submit_bid(db, listing.id, "bob", "Pick me")
        submit_bid(db, listing.id, "carol", "Or me")
        chosen_id = chosen.id

        accepted = accept_bid(db, listing.id, chosen_id, "alice")
        assert accepted.counterpart_identity == "bob"
        statuses = {b.bidder_identity: b.status for b in accepted.bids}
        assert statuses == {"bob": "accepted", "carol": "rejected"}

    def test_paid_listing_waits_for_funding(self, db) -> None:
        listing = make_listing(db, amount="10")
        bid = submit_bid(db, listing.id, "bob", "Pick me")
        accepted = accept_bid(db, listing.id, bid.id, "alice")
        assert accepted.status == ListingStatus.OPEN
        assert accepted.escrow_status == EscrowStatus.NOT_FUNDED

    def test_free_listing_starts_immediately(self, db) -> None:
        listing = make_listing(db, amount="0")
        bid = submit_bid(db, listing.id, "bob", "Pick me")
        accepted = accept_bid(db, listing.id, bid.id, "alice")
        assert accepted.status == ListingStatus.IN_PROGRESS

    def test_only_owner_accepts(self, db) -> None:
        listing = make_listing(db)
        bid = submit_bid(db, listing.id, "bob", "Pick me")
        with pytest.raises(Unauthorized):
            accept_bid(db, listing.id, bid.id, "bob")

    def test_no_bids_after_selection(self, db) -> None:
        listing = make_listing(db)
        bid = submit_bid(db, listing.id, "bob", "Pick me")
        accept_bid(db, listing.id, bid.id, "alice")
        with pytest.raises(InvalidState):
            submit_bid(db, listing.id, "carol", "Still open?")

    def test_cannot_withdraw_accepted_bid(self, db) -> None:
        listing = make_listing(db)
        bid = submit_bid(db, listing.id, "bob", "Pick me")
        bid_id = bid.id
        accept_bid(db, listing.id, bid_id, "alice")
        with pytest.raises(InvalidState):
            withdraw_bid(db, listing.id, bid_id, "bob")


class TestBidApi:
    def test_bid_flow(self, client: TestClient) -> None:
        listing = create_test_listing(client)
        lid = listing["id"]
        r = client.post(f"/api/v1/listings/{lid}/bids/", json={"bidder_identity": "bob", "message": "Hi"})
        assert r.status_code == 201
        bid_id = r.json()["id"]

        r = client.post(f"/api/v1/listings/{lid}/bids/", json={"bidder_identity": "bob", "message": "Again"})
        assert r.status_code == 409
        assert r.json()["detail"]["code"] == "DUPLICATE_BID"

        r = client.put(f"/api/v1/listings/{lid}/bids/{bid_id}", json={"acting_identity": "bob", "message": "Edited"})
        assert r.status_code == 200
        assert r.json()["message"] == "Edited"

        r = client.post(f"/api/v1/listings/{lid}/bids/{bid_id}/accept", json={"acting_identity": "alice"})
        assert r.status_code == 200
        data = r.json()
        assert data["counterpart_identity"] == "bob"
        assert data["bids"][0]["status"] == "accepted"

    def test_withdraw_via_api(self, client: TestClient) -> None:
        listing = create_test_listing(client)
        lid = listing["id"]
        bid_id = client.post(
            f"/api/v1/listings/{lid}/bids/", json={"bidder_identity": "bob", "message": "Hi"}
        ).json()["id"]
        r = client.request("DELETE", f"/api/v1/listings/{lid}/bids/{bid_id}", json={"acting_identity": "bob"})
        assert r.status_code == 200
        assert client.get(f"/api/v1/listings/{lid}").json()["bids"] == []

    def test_empty_message_is_422(self, client: TestClient) -> None:
        listing = create_test_listing(client)
        r = client.post(f"/api/v1/listings/{listing['id']}/bids/", json={"bidder_identity": "bob", "message": ""})
        assert r.status_code == 422


def test_concurrent_accepts_select_one_bid(file_sessions) -> None:
    """The owner accepting two bids at once selects exactly one counterpart."""
    setup = file_sessions()
    try:
        listing_id = make_listing(setup).id
        bid_ids = [submit_bid(setup, listing_id, bidder, "Pick me").id for bidder in ("bob", "carol")]
    finally:
        setup.close()

    def accept(bid_id: int):
        def call() -> Listing:
            session = file_sessions()
            try:
                return accept_bid(session, listing_id, bid_id, "alice")
            finally:
                session.close()
        return call

    results = run_concurrently(*(accept(bid_id) for bid_id in bid_ids))

    assert sum(isinstance(r, Listing) for r in results) == 1
    loser = next(r for r in results if not isinstance(r, Listing))
    assert isinstance(loser, InvalidState)

    check = file_sessions()
    try:
        listing = get_listing(check, listing_id)
        statuses = sorted(bid.status for bid in listing.bids)
        assert statuses == [BidStatus.ACCEPTED, BidStatus.REJECTED]
        accepted = next(bid for bid in listing.bids if bid.status == BidStatus.ACCEPTED)
        assert listing.counterpart_identity == accepted.bidder_identity
        assert listing.status == ListingStatus.OPEN
    finally:
        check.close()
