"""
Payment processor client.

The processor is opaque to the lifecycle engine: it is asked to transfer the
provider's share after the customer confirms, and it reports incoming
customer payments through a signed webhook.  ``PaystackClient`` talks to
Paystack's transfer API over ``httpx``; amounts go out in minor units
(pesewas/kobo).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from roadside.domain.errors import SettlementInitiationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    success: bool
    transfer_id: Optional[str] = None


class PaymentProcessor(ABC):
    @abstractmethod
    async def initiate_transfer(
        self, request_id: int, provider_account: str, amount: float
    ) -> TransferResult:
        """Start a payout.  Raises ``SettlementInitiationFailed`` on rejection."""


class PaystackClient(PaymentProcessor):
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret_key = secret_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    async def initiate_transfer(
        self, request_id: int, provider_account: str, amount: float
    ) -> TransferResult:
        payload = {
            "source": "balance",
            "amount": round(amount * 100),
            "recipient": provider_account,
            "reason": f"Payment for service request {request_id}",
            "reference": f"payout-{request_id}",
        }
        try:
            response = await self._client.post("/transfer", json=payload)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SettlementInitiationFailed(
                f"transfer request failed: {exc}"
            ) from exc

        if response.status_code >= 400 or not body.get("status"):
            raise SettlementInitiationFailed(
                body.get("message") or f"processor returned {response.status_code}"
            )

        transfer_code = (body.get("data") or {}).get("transfer_code")
        logger.info(
            "Transfer %s initiated for request %s (%.2f)",
            transfer_code,
            request_id,
            amount,
        )
        return TransferResult(success=True, transfer_id=transfer_code)

    async def aclose(self) -> None:
        await self._client.aclose()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Paystack signs the raw body with HMAC-SHA512 of the secret key."""
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)
