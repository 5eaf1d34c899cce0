"""Tests for two-party completion, escrow release and its concurrency guarantees."""
import threading
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from skillsupply.errors import EscrowReleaseFailed, InvalidState, MarketplaceError, Unauthorized
from skillsupply.models import EscrowStatus, ListingStatus, UserProfile
from skillsupply.services import ConfirmationOutcome, confirm_completion, get_listing
from tests.conftest import create_test_listing, make_in_progress, make_listing, run_concurrently


def _profile(db, identity: str) -> UserProfile:
    return db.query(UserProfile).filter(UserProfile.identity == identity).one()


class TestConfirmCompletion:
    def test_first_confirmation_waits(self, db, rail) -> None:
        listing = make_in_progress(db, rail)
        listing, outcome = confirm_completion(db, rail, listing.id, "alice")
        assert outcome == ConfirmationOutcome.WAITING
        assert listing.owner_confirmed is True
        assert listing.counterpart_confirmed is False
        assert listing.status == ListingStatus.IN_PROGRESS
        assert rail.release_calls == []

    def test_second_confirmation_completes(self, db, rail) -> None:
        listing = make_in_progress(db, rail, reference="tx-done")
        confirm_completion(db, rail, listing.id, "alice")
        listing, outcome = confirm_completion(db, rail, listing.id, "bob")
        assert outcome == ConfirmationOutcome.COMPLETED
        assert listing.status == ListingStatus.COMPLETED
        assert listing.completed_at is not None
        assert listing.escrow_status == EscrowStatus.RELEASED
        assert listing.escrow_released_at is not None
        # Offers pay the owner.
        assert rail.release_calls == [("tx-done", Decimal("10"), "alice")]
        assert _profile(db, "alice").completed_jobs == 1
        assert _profile(db, "bob").completed_jobs == 1

    def test_request_pays_counterpart(self, db, rail) -> None:
        listing = make_in_progress(db, rail, kind="request", reference="tx-req")
        confirm_completion(db, rail, listing.id, "bob")
        confirm_completion(db, rail, listing.id, "alice")
        assert rail.release_calls == [("tx-req", Decimal("10"), "bob")]

    def test_free_listing_completes_without_release(self, db, rail) -> None:
        listing = make_in_progress(db, rail, amount="0")
        confirm_completion(db, rail, listing.id, "alice")
        listing, outcome = confirm_completion(db, rail, listing.id, "bob")
        assert outcome == ConfirmationOutcome.COMPLETED
        assert listing.escrow_status == EscrowStatus.NOT_FUNDED
        assert rail.release_calls == []

    def test_repeat_confirmation_is_idempotent(self, db, rail) -> None:
        listing = make_in_progress(db, rail)
        _, first = confirm_completion(db, rail, listing.id, "alice")
        version = get_listing(db, listing.id).version
        _, second = confirm_completion(db, rail, listing.id, "alice")
        assert first == ConfirmationOutcome.WAITING
        assert second == ConfirmationOutcome.ALREADY_CONFIRMED
        assert get_listing(db, listing.id).version == version

    def test_confirm_after_completion_is_idempotent(self, db, rail) -> None:
        listing = make_in_progress(db, rail)
        confirm_completion(db, rail, listing.id, "alice")
        listing, _ = confirm_completion(db, rail, listing.id, "bob")
        completed_at = listing.completed_at

        listing, outcome = confirm_completion(db, rail, listing.id, "bob")
        assert outcome == ConfirmationOutcome.ALREADY_CONFIRMED
        assert listing.completed_at == completed_at
        assert len(rail.release_calls) == 1
        assert _profile(db, "bob").completed_jobs == 1

    def test_outsider_cannot_confirm(self, db, rail) -> None:
        listing = make_in_progress(db, rail)
        with pytest.raises(Unauthorized):
            confirm_completion(db, rail, listing.id, "mallory")

    def test_open_listing_cannot_be_confirmed(self, db, rail) -> None:
        listing = make_listing(db)
        with pytest.raises(InvalidState):
            confirm_completion(db, rail, listing.id, "alice")

    def test_release_failure_rolls_back_everything(self, db, rail) -> None:
        listing = make_in_progress(db, rail)
        confirm_completion(db, rail, listing.id, "alice")
        rail.fail_release = True

        with pytest.raises(EscrowReleaseFailed) as exc_info:
            confirm_completion(db, rail, listing.id, "bob")
        assert exc_info.value.retryable is True

        listing = get_listing(db, listing.id)
        assert listing.status == ListingStatus.IN_PROGRESS
        assert listing.counterpart_confirmed is False
        assert listing.escrow_status == EscrowStatus.FUNDED
        assert listing.completed_at is None
        assert _profile(db, "alice").completed_jobs == 0

        rail.fail_release = False
        listing, outcome = confirm_completion(db, rail, listing.id, "bob")
        assert outcome == ConfirmationOutcome.COMPLETED
        assert len(rail.release_calls) == 1


def test_concurrent_confirmations_release_once(file_sessions, rail) -> None:
    """Owner and counterpart confirming at the same instant pay out exactly once."""
    setup = file_sessions()
    try:
        listing_id = make_in_progress(setup, rail, reference="tx-race").id
    finally:
        setup.close()

    barrier = threading.Barrier(2)
    outcomes: dict[str, ConfirmationOutcome] = {}
    errors: list[BaseException] = []

    def confirm_as(identity: str) -> None:
        barrier.wait()
        for _ in range(50):
            session = file_sessions()
            try:
                _, outcomes[identity] = confirm_completion(session, rail, listing_id, identity)
                return
            except MarketplaceError as e:
                if not e.retryable:
                    errors.append(e)
                    return
            except BaseException as e:  # surfaced through the main thread's assertions
                errors.append(e)
                return
            finally:
                session.close()
            time.sleep(0.01)
        errors.append(RuntimeError(f"{identity} never got through"))

    threads = [threading.Thread(target=confirm_as, args=(who,)) for who in ("alice", "bob")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(o.value for o in outcomes.values()) == ["completed", "waiting"]
    assert rail.release_calls == [("tx-race", Decimal("10"), "alice")]

    check = file_sessions()
    try:
        listing = get_listing(check, listing_id)
        assert listing.status == ListingStatus.COMPLETED
        assert listing.escrow_status == EscrowStatus.RELEASED
        assert _profile(check, "alice").completed_jobs == 1
        assert _profile(check, "bob").completed_jobs == 1
    finally:
        check.close()


def test_duplicate_confirmation_pays_out_once(file_sessions, rail) -> None:
    """A retried confirmation racing the original one still pays out once."""
    setup = file_sessions()
    try:
        listing_id = make_in_progress(setup, rail, reference="tx-dup").id
        confirm_completion(setup, rail, listing_id, "alice")
    finally:
        setup.close()
    rail.release_delay = 0.3

    def confirm_as_bob() -> ConfirmationOutcome:
        session = file_sessions()
        try:
            return confirm_completion(session, rail, listing_id, "bob")[1]
        finally:
            session.close()

    results = run_concurrently(confirm_as_bob, confirm_as_bob)

    assert rail.release_calls == [("tx-dup", Decimal("10"), "alice")]
    assert results.count(ConfirmationOutcome.COMPLETED) == 1
    other = next(r for r in results if r != ConfirmationOutcome.COMPLETED)
    assert other == ConfirmationOutcome.ALREADY_CONFIRMED or isinstance(other, InvalidState)

    check = file_sessions()
    try:
        listing = get_listing(check, listing_id)
        assert listing.status == ListingStatus.COMPLETED
        assert listing.escrow_status == EscrowStatus.RELEASED
        assert _profile(check, "alice").completed_jobs == 1
        assert _profile(check, "bob").completed_jobs == 1
    finally:
        check.close()


def test_claimed_release_blocks_a_second_payout(db, rail) -> None:
    listing = make_in_progress(db, rail, reference="tx-claimed")
    confirm_completion(db, rail, listing.id, "alice")
    listing = get_listing(db, listing.id)
    listing.counterpart_confirmed = True
    listing.escrow_status = EscrowStatus.RELEASING
    db.commit()

    _, outcome = confirm_completion(db, rail, listing.id, "bob")
    assert outcome == ConfirmationOutcome.ALREADY_CONFIRMED
    assert rail.release_calls == []

class TestConfirmApi:
    def test_confirm_flow(self, client: TestClient) -> None:
        listing = create_test_listing(client, amount="0")
        lid = listing["id"]
        client.post(f"/api/v1/listings/{lid}/hire", json={"counterpart_identity": "bob"})

        r = client.post(f"/api/v1/listings/{lid}/confirm", json={"acting_identity": "alice"})
        assert r.status_code == 200
        assert r.json()["outcome"] == "waiting"

        r = client.post(f"/api/v1/listings/{lid}/confirm", json={"acting_identity": "bob"})
        assert r.status_code == 200
        data = r.json()
        assert data["outcome"] == "completed"
        assert data["listing"]["status"] == "completed"
        assert data["listing"]["completion"]["completed_at"] is not None

    def test_release_failure_is_502(self, client: TestClient, rail) -> None:
        listing = create_test_listing(client)
        lid = listing["id"]
        rail.deposit("tx-502", "10")
        client.post(f"/api/v1/listings/{lid}/hire", json={"counterpart_identity": "bob", "external_tx_ref": "tx-502"})
        client.post(f"/api/v1/listings/{lid}/confirm", json={"acting_identity": "alice"})
        rail.fail_release = True
        r = client.post(f"/api/v1/listings/{lid}/confirm", json={"acting_identity": "bob"})
        assert r.status_code == 502
        assert r.json()["detail"]["code"] == "ESCROW_RELEASE_FAILED"
        assert client.get(f"/api/v1/listings/{lid}").json()["status"] == "in_progress"
