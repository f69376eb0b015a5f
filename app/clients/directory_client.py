from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

import httpx

from app.core.config import settings
from app.core.exceptions import CollaboratorUnavailable
from app.core.logger import logger

log = logger.getChild("directory")


@dataclass(frozen=True)
class PractitionerProfile:
    id: UUID
    full_name: str
    fee: Decimal
    telemedicine_enabled: bool
    available_now: bool

    @property
    def accepts_instant(self) -> bool:
        return self.telemedicine_enabled and self.available_now


class DirectoryClient(Protocol):
    async def get_practitioner(self, practitioner_id: UUID) -> Optional[PractitionerProfile]:
        ...


class HttpDirectoryClient:
    """Looks practitioners up in the directory service."""

    def __init__(
        self,
        base_url: str = settings.DIRECTORY_BASE_URL,
        timeout: float = settings.COLLABORATOR_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout)
        self.transport = transport

    async def get_practitioner(self, practitioner_id: UUID) -> Optional[PractitionerProfile]:
        url = f"{self.base_url}/practitioners/{practitioner_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            log.warning(f"Directory lookup failed for {practitioner_id}: {e}")
            raise CollaboratorUnavailable("Practitioner directory is unavailable")

        if r.status_code == 404:
            return None
        if r.status_code >= 400:
            log.warning(f"Directory returned {r.status_code} for {practitioner_id}")
            raise CollaboratorUnavailable("Practitioner directory is unavailable")

        body = r.json()
        return PractitionerProfile(
            id=UUID(str(body["id"])),
            full_name=body.get("full_name") or "",
            # A practitioner without a configured fee consults for free
            fee=Decimal(str(body.get("telemedicine_fee") or 0)),
            telemedicine_enabled=bool(body.get("telemedicine_enabled")),
            available_now=bool(body.get("telemedicine_available_now")),
        )
