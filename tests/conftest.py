"""Test fixtures: in-memory SQLite, a FastAPI TestClient and a fake payment rail."""
import os
import threading
import time
from decimal import Decimal
from typing import Any, Callable, Generator, Optional

import pytest

# Force SQLite in-memory for tests BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("API_WRITE_KEY", None)
os.environ.pop("ESCROW_FEE_RATE", None)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from skillsupply.database import Base, get_db
from skillsupply.main import app
from skillsupply.models import Listing
from skillsupply.payments import CaptureResult, ReleaseError, VerificationError, get_payment_rail
from skillsupply.services import create_listing, fund_and_hire

engine = create_engine(
    "sqlite:///file::memory:?cache=shared&uri=true",
    connect_args={"check_same_thread": False},
)
TestSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db() -> Generator[Session, None, None]:
    """Override DB dependency with test session."""
    db = TestSession()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


class FakePaymentRail:
    """In-memory payment rail.

    Deposits are registered with :meth:`deposit`; anything else is reported
    as unknown/pending. References in ``rejected`` are refused outright.
    """

    def __init__(self) -> None:
        self.deposits: dict[str, Decimal] = {}
        self.rejected: set[str] = set()
        self.release_calls: list[tuple[str, Decimal, str]] = []
        self.fail_release = False
        # Seconds to stall inside a call, to widen race windows in tests.
        self.verify_delay = 0.0
        self.release_delay = 0.0
        self._lock = threading.Lock()

    def deposit(self, reference: str, amount: Any) -> str:
        self.deposits[reference] = Decimal(str(amount))
        return reference

    def verify_and_capture(self, reference: str, min_amount: Decimal) -> CaptureResult:
        time.sleep(self.verify_delay)
        if reference in self.rejected:
            raise VerificationError(f"{reference} rejected", retryable=False)
        if reference not in self.deposits:
            raise VerificationError(f"{reference} unknown", retryable=True)
        return CaptureResult(ok=True, captured_amount=self.deposits[reference])

    def release(self, reference: str, amount: Decimal, payee: str) -> None:
        if self.fail_release:
            raise ReleaseError("rail unavailable")
        time.sleep(self.release_delay)
        with self._lock:
            self.release_calls.append((reference, Decimal(amount), payee))


@pytest.fixture(scope="session", autouse=True)
def setup_db() -> Generator[None, None, None]:
    """Create and teardown all tables for the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables() -> Generator[None, None, None]:
    """Every test starts from empty tables."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(autouse=True)
def rail() -> Generator[FakePaymentRail, None, None]:
    """Fake payment rail, also injected into the API."""
    fake = FakePaymentRail()
    app.dependency_overrides[get_payment_rail] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_rail, None)


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """Provide a TestClient instance."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Provide a test DB session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def file_sessions(tmp_path: Any) -> Generator[sessionmaker, None, None]:
    """Session factory on a file-backed SQLite database, for multi-threaded tests."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


def make_listing(db: Session, **overrides: Any) -> Listing:
    """Factory helper: create a listing through the service layer."""
    fields: dict[str, Any] = {
        "owner_identity": "alice",
        "kind": "offer",
        "title": "Logo design",
        "description": "Vector logo in three drafts",
        "amount": "10",
        "category": "design",
    }
    fields.update(overrides)
    return create_listing(db, **fields)


def make_in_progress(
    db: Session,
    rail: FakePaymentRail,
    counterpart: str = "bob",
    reference: Optional[str] = None,
    **overrides: Any,
) -> Listing:
    """Factory helper: create a listing and fund/hire ``counterpart`` on it."""
    listing = make_listing(db, **overrides)
    if Decimal(listing.amount) > 0:
        reference = rail.deposit(reference or f"tx-{listing.id}", listing.amount)
    return fund_and_hire(db, rail, listing.id, counterpart, reference)


def create_test_listing(client: TestClient, **overrides: Any) -> dict[str, Any]:
    """Factory helper: create a listing via the API and return the response JSON.

    Args:
        client: TestClient instance.
        **overrides: Override default listing fields.

    Returns:
        The full response JSON dict.
    """
    payload = {
        "owner_identity": "alice",
        "kind": "offer",
        "title": "Logo design",
        "description": "Vector logo in three drafts",
        "amount": "10",
        "category": "design",
    }
    payload.update(overrides)
    r = client.post("/api/v1/listings/", json=payload)
    assert r.status_code == 201, f"Failed to create listing: {r.text}"
    return r.json()


def run_concurrently(*calls: Callable[[], Any]) -> list[Any]:
    """Start every call at the same instant, each on its own thread.

    Returns:
        Each call's return value, or the exception it raised, in call order.
    """
    barrier = threading.Barrier(len(calls))
    results: list[Any] = [None] * len(calls)

    def run(index: int, call: Callable[[], Any]) -> None:
        barrier.wait()
        try:
            results[index] = call()
        except Exception as e:
            results[index] = e

    threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results
