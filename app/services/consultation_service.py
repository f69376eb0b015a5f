from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.clients.directory_client import DirectoryClient
from app.clients.payment_client import PaymentProcessor
from app.clients.room_provisioner import RoomProvisioner
from app.core import exceptions as errors
from app.core.config import settings
from app.core.logger import logger
from app.core.utils import Clock, utcnow
from app.db.models import (
    ACTIVE_STATUSES,
    PAYABLE_STATUSES,
    ConsultationStatus,
    InstantConsultation,
    PaymentStatus,
)
from app.services.deadline_service import DeadlineService
from app.services.request_store import RequestStore

log = logger.getChild("consultations")

MAX_CHIEF_COMPLAINT_LENGTH = 2000
MAX_REASON_LENGTH = 500


class Decision(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


SESSION_OUTCOMES = frozenset({ConsultationStatus.COMPLETED, ConsultationStatus.NO_SHOW})


class ConsultationService:
    def __init__(
        self,
        session: AsyncSession,
        directory: DirectoryClient,
        payments: PaymentProcessor,
        rooms: RoomProvisioner,
        clock: Clock = utcnow,
        timeout_seconds: int = settings.ACCEPTANCE_TIMEOUT_SECONDS,
        capture_attempts: int = settings.PAYMENT_CAPTURE_ATTEMPTS,
    ):
        self.session = session
        self.directory = directory
        self.payments = payments
        self.rooms = rooms
        self.clock = clock
        self.timeout_seconds = timeout_seconds
        self.capture_attempts = capture_attempts
        self.store = RequestStore(session)
        self.deadlines = DeadlineService(self.store, clock)

    async def _load(self, consultation_id: UUID) -> InstantConsultation:
        consultation = await self.store.get(consultation_id)
        if not consultation:
            raise errors.NotFound()
        return consultation

    @staticmethod
    def _ensure_participant(consultation: InstantConsultation, caller_id: UUID) -> None:
        if caller_id not in (consultation.patient_id, consultation.practitioner_id):
            raise errors.Unauthorized()

    async def _ensure_patient_free(self, patient_id: UUID) -> None:
        stmt = select(InstantConsultation.id).where(
            InstantConsultation.patient_id == patient_id,
            InstantConsultation.status.in_([
                ConsultationStatus.WAITING,
                ConsultationStatus.IN_PROGRESS,
            ]),
        ).limit(1)
        result = await self.session.execute(stmt)
        if result.scalars().first() is not None:
            raise errors.PatientBusy()

    async def _release_stale_slot(self, practitioner_id: UUID) -> None:
        # Frees a slot still held by an overdue request the sweeper has not reached
        active = await self.store.get_active_for_practitioner(practitioner_id)
        if active is not None:
            await self.deadlines.expire_if_overdue(active)

    # Intake

    async def create_request(
        self,
        patient_id: UUID,
        practitioner_id: UUID,
        chief_complaint: Optional[str],
        caller_id: UUID,
    ) -> InstantConsultation:
        if caller_id != patient_id:
            raise errors.Unauthorized("Requests can only be created for yourself")
        if patient_id == practitioner_id:
            raise errors.ValidationError("Patient and practitioner must differ")
        if chief_complaint is not None:
            chief_complaint = chief_complaint.strip() or None
        if chief_complaint and len(chief_complaint) > MAX_CHIEF_COMPLAINT_LENGTH:
            raise errors.ValidationError(
                f"Chief complaint is limited to {MAX_CHIEF_COMPLAINT_LENGTH} characters"
            )

        profile = await self.directory.get_practitioner(practitioner_id)
        if profile is None:
            raise errors.NotFound("Practitioner not found")
        if not profile.accepts_instant:
            if not profile.telemedicine_enabled:
                raise errors.PractitionerUnavailable("This practitioner does not offer telemedicine consultations")
            raise errors.PractitionerUnavailable()

        await self._ensure_patient_free(patient_id)
        await self._release_stale_slot(practitioner_id)

        now = self.clock()
        fee = Decimal(profile.fee)
        consultation = InstantConsultation(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            active_practitioner_id=practitioner_id,
            status=ConsultationStatus.PENDING_ACCEPTANCE,
            created_at=now,
            acceptance_deadline=now + timedelta(seconds=self.timeout_seconds),
            fee=fee,
            payment_status=PaymentStatus.PAID if fee == 0 else PaymentStatus.UNPAID,
            chief_complaint=chief_complaint,
        )
        try:
            consultation = await self.store.insert(consultation, actor_id=patient_id)
        except IntegrityError:
            log.info(f"Practitioner {practitioner_id} busy; request from patient {patient_id} refused")
            raise errors.DoctorBusy()

        log.info(
            f"Consultation {consultation.id} requested by patient {patient_id} "
            f"for practitioner {practitioner_id} (fee={fee})"
        )
        return consultation

    # Practitioner response

    async def respond(
        self,
        consultation_id: UUID,
        caller_id: UUID,
        decision: Decision,
        rejection_reason: Optional[str] = None,
    ) -> InstantConsultation:
        consultation = await self._load(consultation_id)
        if consultation.practitioner_id != caller_id:
            raise errors.Unauthorized("This consultation is not assigned to you")

        consultation = await self.deadlines.expire_if_overdue(consultation)
        status = consultation.status

        if status == ConsultationStatus.EXPIRED:
            raise errors.DeadlinePassed(current_status=status.value)
        if decision == Decision.ACCEPT and status == ConsultationStatus.WAITING:
            return consultation
        if status != ConsultationStatus.PENDING_ACCEPTANCE:
            raise errors.InvalidTransition(
                "This consultation is not pending acceptance", current_status=status.value
            )

        now = self.clock()
        if decision == Decision.ACCEPT:
            target = ConsultationStatus.WAITING
            values = {"status": target, "accepted_at": now}
        else:
            target = ConsultationStatus.REJECTED
            values = {
                "status": target,
                "rejected_at": now,
                "rejection_reason": (rejection_reason or "")[:MAX_REASON_LENGTH] or None,
            }

        updated = await self.store.compare_and_set(
            consultation,
            consultation.version,
            values,
            action=decision.value.lower(),
            actor_id=caller_id,
        )
        if updated is not None:
            return updated

        current = await self.store.get(consultation_id)
        if current.status == target:
            return current
        if current.status == ConsultationStatus.EXPIRED:
            raise errors.DeadlinePassed(current_status=current.status.value)
        raise errors.ConcurrencyConflict(current_status=current.status.value)

    # Payment gate

    async def capture_payment(self, consultation_id: UUID, caller_id: UUID, method: str) -> InstantConsultation:
        method = (method or "").strip()
        if not method:
            raise errors.ValidationError("Payment method is required")

        consultation = await self._load(consultation_id)
        if consultation.patient_id != caller_id:
            raise errors.Unauthorized("Only the patient can pay for this consultation")

        consultation = await self.deadlines.expire_if_overdue(consultation)
        if consultation.status not in PAYABLE_STATUSES:
            raise errors.NotPayable(current_status=consultation.status.value)
        if consultation.is_paid:
            return consultation

        reference = await self.payments.charge(consultation_id, consultation.fee, method)
        log.info(f"Charged {consultation.fee} for consultation {consultation_id} (ref={reference})")

        try:
            for _ in range(self.capture_attempts):
                paid = await self.store.compare_and_set(
                    consultation,
                    consultation.version,
                    {
                        "payment_status": PaymentStatus.PAID,
                        "payment_method": method,
                        "payment_reference": reference,
                        "paid_at": self.clock(),
                    },
                    action="payment",
                    actor_id=caller_id,
                    payload={"method": method, "reference": reference},
                )
                if paid is not None:
                    return paid

                # Lost to a concurrent write; retry on the fresh version while still payable
                consultation = await self.store.get(consultation_id)
                if consultation.is_paid or consultation.status not in PAYABLE_STATUSES:
                    break
        except Exception:
            log.error(f"Recording charge {reference} for consultation {consultation_id} failed; refunding")
            await self.payments.refund(reference)
            raise

        await self.payments.refund(reference)
        if consultation.is_paid:
            return consultation
        if consultation.status not in PAYABLE_STATUSES:
            raise errors.NotPayable(current_status=consultation.status.value)
        raise errors.ConcurrencyConflict(current_status=consultation.status.value)

    # Session lifecycle

    async def start_session(self, consultation_id: UUID, caller_id: UUID) -> InstantConsultation:
        consultation = await self._load(consultation_id)
        if consultation.practitioner_id != caller_id:
            raise errors.Unauthorized("Only the practitioner can start the session")

        consultation = await self.deadlines.expire_if_overdue(consultation)
        if consultation.status == ConsultationStatus.IN_PROGRESS:
            return consultation
        if consultation.status != ConsultationStatus.WAITING:
            raise errors.InvalidTransition(
                "Session can only start once the request is accepted",
                current_status=consultation.status.value,
            )
        if not consultation.is_paid:
            raise errors.PaymentRequired(current_status=consultation.status.value)

        room = await self.rooms.provision(consultation)
        started = await self.store.compare_and_set(
            consultation,
            consultation.version,
            {
                "status": ConsultationStatus.IN_PROGRESS,
                "started_at": self.clock(),
                "room_id": room.room_id,
                "room_url": room.room_url,
            },
            action="start",
            actor_id=caller_id,
            payload={"room_id": room.room_id},
        )
        if started is not None:
            return started

        current = await self.store.get(consultation_id)
        # Provisioners may hand out the same id twice; never free the winner's room
        if current.room_id != room.room_id:
            await self.rooms.release(room.room_id)
        if current.status == ConsultationStatus.IN_PROGRESS:
            return current
        raise errors.ConcurrencyConflict(current_status=current.status.value)

    async def end_session(
        self, consultation_id: UUID, caller_id: UUID, outcome: ConsultationStatus
    ) -> InstantConsultation:
        outcome = ConsultationStatus(outcome)
        if outcome not in SESSION_OUTCOMES:
            raise errors.ValidationError("Outcome must be COMPLETED or NO_SHOW")

        consultation = await self._load(consultation_id)
        self._ensure_participant(consultation, caller_id)
        if consultation.status != ConsultationStatus.IN_PROGRESS:
            raise errors.InvalidTransition(
                "Only a session in progress can be ended",
                current_status=consultation.status.value,
            )

        ended = await self.store.compare_and_set(
            consultation,
            consultation.version,
            {"status": outcome, "ended_at": self.clock()},
            action="end",
            actor_id=caller_id,
        )
        if ended is not None:
            return ended

        current = await self.store.get(consultation_id)
        if current.status == outcome:
            return current
        raise errors.ConcurrencyConflict(current_status=current.status.value)

    async def cancel(
        self, consultation_id: UUID, caller_id: UUID, reason: Optional[str] = None
    ) -> InstantConsultation:
        consultation = await self._load(consultation_id)
        self._ensure_participant(consultation, caller_id)

        consultation = await self.deadlines.expire_if_overdue(consultation)
        status = consultation.status
        if status == ConsultationStatus.PENDING_ACCEPTANCE and caller_id != consultation.patient_id:
            raise errors.InvalidTransition(
                "A pending request is declined by rejecting it", current_status=status.value
            )
        if status not in (ConsultationStatus.PENDING_ACCEPTANCE, ConsultationStatus.WAITING):
            raise errors.InvalidTransition(
                "Consultation can no longer be cancelled", current_status=status.value
            )

        cancelled = await self.store.compare_and_set(
            consultation,
            consultation.version,
            {
                "status": ConsultationStatus.CANCELLED,
                "cancelled_at": self.clock(),
                "cancelled_by": caller_id,
                "cancellation_reason": (reason or "")[:MAX_REASON_LENGTH] or None,
            },
            action="cancel",
            actor_id=caller_id,
        )
        if cancelled is not None:
            return cancelled

        current = await self.store.get(consultation_id)
        if current.status == ConsultationStatus.CANCELLED:
            return current
        raise errors.ConcurrencyConflict(current_status=current.status.value)

    # Reads

    async def get_status(self, consultation_id: UUID, caller_id: UUID) -> InstantConsultation:
        consultation = await self._load(consultation_id)
        self._ensure_participant(consultation, caller_id)
        return await self.deadlines.expire_if_overdue(consultation)

    async def list_pending_for_practitioner(self, caller_id: UUID) -> List[InstantConsultation]:
        stmt = (
            select(InstantConsultation)
            .where(
                InstantConsultation.practitioner_id == caller_id,
                InstantConsultation.status == ConsultationStatus.PENDING_ACCEPTANCE,
                InstantConsultation.acceptance_deadline >= self.clock(),
            )
            .order_by(InstantConsultation.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_active_for_patient(self, caller_id: UUID) -> List[InstantConsultation]:
        stmt = (
            select(InstantConsultation)
            .where(
                InstantConsultation.patient_id == caller_id,
                InstantConsultation.status.in_(list(ACTIVE_STATUSES)),
            )
            .order_by(InstantConsultation.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        active = []
        for consultation in result.scalars().all():
            consultation = await self.deadlines.expire_if_overdue(consultation)
            if consultation.status in ACTIVE_STATUSES:
                active.append(consultation)
        return active
