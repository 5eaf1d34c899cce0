"""Payment-rail collaborator: escrow deposit verification and payout.

The marketplace never builds or signs transactions itself. It hands the
rail an external transaction reference and asks it to confirm that at least
a given amount landed in the platform escrow account, and later asks it to
pay the escrowed amount out to the payee.
"""
import logging
import os
from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from skillsupply.circuit_breaker import CircuitBreaker
from skillsupply.constants import CURRENCY, PAYMENT_RAIL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class CaptureResult(BaseModel):
    """Outcome of a deposit verification."""

    ok: bool
    captured_amount: Decimal = Field(default=Decimal("0"))


class VerificationError(Exception):
    """The rail could not confirm a deposit.

    ``retryable`` is True when the reference is unknown or still pending, or
    the rail itself was unreachable, and False when the rail rejected it.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ReleaseError(Exception):
    """The rail failed to pay out an escrow."""


class PaymentRail(Protocol):
    def verify_and_capture(self, reference: str, min_amount: Decimal) -> CaptureResult:
        ...

    def release(self, reference: str, amount: Decimal, payee: str) -> None:
        ...


_REJECTED_STATUSES = {400, 402, 409, 422}


class HttpPaymentRail:
    """Payment rail reached over HTTP.

    ``POST {base_url}/verify`` with ``{"reference", "min_amount", "currency",
    "escrow_account"}`` answers ``{"ok", "captured_amount"}``.
    ``POST {base_url}/release`` with ``{"reference", "amount", "currency",
    "payee"}`` answers 2xx once the payout is accepted. Releases are keyed by
    the escrow reference, so the rail treats a repeated release as a no-op.
    """

    def __init__(
        self,
        base_url: Optional[str],
        *,
        api_key: str = "",
        escrow_account: str = "",
        timeout: float = PAYMENT_RAIL_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.escrow_account = escrow_account
        self.breaker = breaker or CircuitBreaker(name="payment_rail")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.Client(timeout=timeout, headers=headers, transport=transport)

    def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        if not self.base_url:
            raise httpx.TransportError("Payment rail is not configured (PAYMENT_RAIL_URL unset)")
        if not self.breaker.can_execute():
            raise httpx.TransportError("Payment rail circuit is open")
        try:
            response = self._client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError:
            self.breaker.record_failure()
            raise
        if response.status_code >= 500:
            self.breaker.record_failure()
        else:
            self.breaker.record_success()
        return response

    def verify_and_capture(self, reference: str, min_amount: Decimal) -> CaptureResult:
        payload = {
            "reference": reference,
            "min_amount": str(min_amount),
            "currency": CURRENCY,
            "escrow_account": self.escrow_account,
        }
        try:
            response = self._post("/verify", payload)
        except httpx.HTTPError as e:
            logger.warning("Payment rail unreachable verifying %s: %s", reference, e)
            raise VerificationError(f"Payment rail unavailable: {e}", retryable=True) from e

        if response.status_code == 404:
            raise VerificationError(f"Unknown or pending transaction reference {reference}", retryable=True)
        if response.status_code in _REJECTED_STATUSES:
            raise VerificationError(f"Payment rail rejected reference {reference}: {response.text}")
        if response.status_code >= 400:
            raise VerificationError(
                f"Payment rail error {response.status_code} verifying {reference}", retryable=True
            )
        return CaptureResult.model_validate(response.json())

    def release(self, reference: str, amount: Decimal, payee: str) -> None:
        payload = {"reference": reference, "amount": str(amount), "currency": CURRENCY, "payee": payee}
        try:
            response = self._post("/release", payload)
        except httpx.HTTPError as e:
            raise ReleaseError(f"Payment rail unavailable: {e}") from e
        if response.status_code >= 400:
            raise ReleaseError(f"Payment rail refused release of {reference}: {response.status_code}")
        logger.info("Escrow %s released: %s %s to %s", reference, amount, CURRENCY, payee)

    def close(self) -> None:
        self._client.close()


@lru_cache(maxsize=1)
def get_payment_rail() -> PaymentRail:
    """FastAPI dependency returning the process-wide payment rail client."""
    return HttpPaymentRail(
        os.getenv("PAYMENT_RAIL_URL"),
        api_key=os.getenv("PAYMENT_RAIL_API_KEY", ""),
        escrow_account=os.getenv("ESCROW_ACCOUNT", ""),
    )
