from dataclasses import dataclass
from typing import Protocol

from app.core.config import settings
from app.core.utils import room_id_for
from app.db.models import InstantConsultation


@dataclass(frozen=True)
class Room:
    room_id: str
    room_url: str


class RoomProvisioner(Protocol):
    async def provision(self, consultation: InstantConsultation) -> Room:
        ...

    async def release(self, room_id: str) -> None:
        ...


class LocalRoomProvisioner:
    """Derives the room handle from the consultation id; nothing to allocate or free."""

    def __init__(self, url_template: str = settings.ROOM_URL_TEMPLATE):
        self.url_template = url_template

    async def provision(self, consultation: InstantConsultation) -> Room:
        return Room(
            room_id=room_id_for(consultation.id),
            room_url=self.url_template.format(consultation_id=consultation.id),
        )

    async def release(self, room_id: str) -> None:
        return None
