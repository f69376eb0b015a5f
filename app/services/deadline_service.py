from typing import Optional

from sqlmodel import select

from app.core.logger import logger
from app.core.utils import Clock, utcnow
from app.db.models import ConsultationStatus, InstantConsultation
from app.services.request_store import RequestStore

log = logger.getChild("deadlines")


class DeadlineService:
    """
    Turns overdue PENDING_ACCEPTANCE requests into EXPIRED ones.

    Two entry points share the same CAS: ``expire_if_overdue`` runs inline
    before reads and responses, ``sweep`` runs periodically for requests
    nobody is looking at.
    """

    def __init__(self, store: RequestStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    async def _try_expire(self, consultation: InstantConsultation) -> Optional[InstantConsultation]:
        now = self.clock()
        return await self.store.compare_and_set(
            consultation,
            consultation.version,
            {"status": ConsultationStatus.EXPIRED, "expired_at": now},
            action="expire",
            payload={"acceptance_deadline": consultation.acceptance_deadline.isoformat()},
        )

    async def expire_if_overdue(self, consultation: InstantConsultation) -> InstantConsultation:
        """
        Returns the record as it stands after the deadline has been applied.
        Losing the race is not an error: whatever the winner wrote is the
        current truth.
        """
        consultation_id = consultation.id
        while consultation.is_overdue(self.clock()):
            expired = await self._try_expire(consultation)
            if expired is not None:
                return expired
            consultation = await self.store.get(consultation_id)
        return consultation

    async def sweep(self, limit: int = 100) -> int:
        now = self.clock()
        stmt = (
            select(InstantConsultation.id)
            .where(
                InstantConsultation.status == ConsultationStatus.PENDING_ACCEPTANCE,
                InstantConsultation.acceptance_deadline < now,
            )
            .order_by(InstantConsultation.acceptance_deadline)
            .limit(limit)
        )
        result = await self.store.session.execute(stmt)
        overdue_ids = list(result.scalars().all())

        expired = 0
        for consultation_id in overdue_ids:
            consultation = await self.store.get(consultation_id)
            if consultation is None or not consultation.is_overdue(self.clock()):
                continue
            if await self._try_expire(consultation) is not None:
                expired += 1

        if overdue_ids:
            log.debug(f"Sweep found {len(overdue_ids)} overdue requests, expired {expired}")
        return expired
