from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

import httpx

from app.core.config import settings
from app.core.exceptions import CollaboratorUnavailable, PaymentFailed
from app.core.logger import logger

log = logger.getChild("payments")


class PaymentProcessor(Protocol):
    async def charge(self, consultation_id: UUID, amount: Decimal, method: str) -> str:
        """Returns the processor's charge reference; raises ``PaymentFailed`` on decline."""
        ...

    async def refund(self, reference: str) -> None:
        ...


class HttpPaymentProcessor:
    def __init__(
        self,
        base_url: str = settings.PAYMENT_BASE_URL,
        currency: str = settings.PAYMENT_CURRENCY,
        timeout: float = settings.COLLABORATOR_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.timeout = httpx.Timeout(timeout)
        self.transport = transport

    async def charge(self, consultation_id: UUID, amount: Decimal, method: str) -> str:
        payload = {
            "reference": str(consultation_id),
            "amount": str(amount),
            "currency": self.currency,
            "method": method,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/charges", json=payload)
        except httpx.HTTPError as e:
            log.warning(f"Charge for consultation {consultation_id} failed: {e}")
            raise CollaboratorUnavailable("Payment processor is unavailable")

        if r.status_code in (402, 422):
            reason = r.json().get("message") if r.content else None
            log.info(f"Charge for consultation {consultation_id} declined: {reason}")
            raise PaymentFailed(reason)
        if r.status_code >= 400:
            log.warning(f"Payment processor returned {r.status_code} for consultation {consultation_id}")
            raise CollaboratorUnavailable("Payment processor is unavailable")

        body = r.json()
        if body.get("status") not in ("succeeded", "captured"):
            raise PaymentFailed(f"Charge ended in status {body.get('status')!r}")
        return str(body["id"])

    async def refund(self, reference: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/charges/{reference}/refund")
                r.raise_for_status()
        except httpx.HTTPError as e:
            log.error(f"Refund of charge {reference} failed: {e}")
            raise CollaboratorUnavailable("Payment processor is unavailable")
