from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.exceptions import InvalidTransition, PaymentRequired
from app.core.logger import logger
from app.db.models import (
    ConsultationEvent,
    ConsultationStatus,
    InstantConsultation,
    TERMINAL_STATUSES,
    can_transition,
)

log = logger.getChild("store")


class RequestStore:
    """
    Persistence for instant consultations.

    Every state write goes through ``compare_and_set``: an UPDATE guarded by
    the version the caller read. Two writers holding the same version can
    never both succeed, so the history of a record is linear.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, consultation_id: UUID) -> Optional[InstantConsultation]:
        stmt = (
            select(InstantConsultation)
            .where(InstantConsultation.id == consultation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_active_for_practitioner(self, practitioner_id: UUID) -> Optional[InstantConsultation]:
        stmt = (
            select(InstantConsultation)
            .where(InstantConsultation.active_practitioner_id == practitioner_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def insert(self, consultation: InstantConsultation, actor_id: Optional[UUID] = None) -> InstantConsultation:
        """
        Raises ``IntegrityError`` when the practitioner already holds an
        active request; the session is rolled back first.
        """
        self.session.add(consultation)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise

        self.session.add(ConsultationEvent(
            consultation_id=consultation.id,
            actor_id=actor_id,
            action="create",
            from_status=None,
            to_status=consultation.status.value,
            version=consultation.version,
        ))
        await self.session.commit()
        await self.session.refresh(consultation)
        return consultation

    async def compare_and_set(
        self,
        consultation: InstantConsultation,
        expected_version: int,
        values: dict[str, Any],
        *,
        action: str,
        actor_id: Optional[UUID] = None,
        payload: Optional[dict] = None,
    ) -> Optional[InstantConsultation]:
        """
        Apply ``values`` only if the row is still at ``expected_version``.

        Returns the updated record, or ``None`` when another writer got there
        first. ``consultation`` must be the snapshot read at
        ``expected_version``; the edge check runs against it.
        """
        consultation_id = consultation.id
        current = consultation.status
        target = values.get("status", current)

        if target != current:
            if not can_transition(current, target):
                raise InvalidTransition(
                    f"Cannot move from {current.value} to {target.value}",
                    current_status=current.value,
                )
            if target == ConsultationStatus.IN_PROGRESS and not consultation.is_paid:
                raise PaymentRequired()

        values = dict(values)
        if target in TERMINAL_STATUSES:
            values["active_practitioner_id"] = None

        stmt = (
            update(InstantConsultation)
            .where(
                InstantConsultation.id == consultation_id,
                InstantConsultation.version == expected_version,
            )
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount != 1:
            # Nothing was written; commit only ends the transaction so records
            # already loaded in this session stay readable.
            await self.session.commit()
            log.info(
                f"Lost CAS on consultation {consultation_id} "
                f"(action={action}, expected_version={expected_version})"
            )
            return None

        self.session.add(ConsultationEvent(
            consultation_id=consultation_id,
            actor_id=actor_id,
            action=action,
            from_status=current.value,
            to_status=target.value,
            version=expected_version + 1,
            payload=payload,
        ))
        await self.session.commit()

        if target != current:
            log.info(
                f"Consultation {consultation_id}: {current.value} -> {target.value} "
                f"(action={action}, version={expected_version + 1})"
            )
        return await self.get(consultation_id)
