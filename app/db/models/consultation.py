from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from app.core.utils import utcnow
from app.db.types import UTCDateTime


class ConsultationStatus(str, Enum):
    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


ACTIVE_STATUSES = frozenset({
    ConsultationStatus.PENDING_ACCEPTANCE,
    ConsultationStatus.WAITING,
    ConsultationStatus.IN_PROGRESS,
})

TERMINAL_STATUSES = frozenset({
    ConsultationStatus.COMPLETED,
    ConsultationStatus.REJECTED,
    ConsultationStatus.EXPIRED,
    ConsultationStatus.CANCELLED,
    ConsultationStatus.NO_SHOW,
})

# Every status write must follow one of these edges
ALLOWED_TRANSITIONS: dict[ConsultationStatus, frozenset[ConsultationStatus]] = {
    ConsultationStatus.PENDING_ACCEPTANCE: frozenset({
        ConsultationStatus.WAITING,
        ConsultationStatus.REJECTED,
        ConsultationStatus.EXPIRED,
        ConsultationStatus.CANCELLED,
    }),
    ConsultationStatus.WAITING: frozenset({
        ConsultationStatus.IN_PROGRESS,
        ConsultationStatus.CANCELLED,
    }),
    ConsultationStatus.IN_PROGRESS: frozenset({
        ConsultationStatus.COMPLETED,
        ConsultationStatus.NO_SHOW,
    }),
}

PAYABLE_STATUSES = frozenset({
    ConsultationStatus.PENDING_ACCEPTANCE,
    ConsultationStatus.WAITING,
})


def can_transition(current: ConsultationStatus, target: ConsultationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class InstantConsultation(SQLModel, table=True):
    __tablename__ = "instant_consultations"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    patient_id: UUID = Field(index=True)
    practitioner_id: UUID = Field(index=True)
    # Mirrors practitioner_id while the request is active, NULL once terminal.
    # The unique index is what keeps one active request per practitioner.
    active_practitioner_id: Optional[UUID] = Field(default=None, unique=True)
    status: ConsultationStatus = Field(default=ConsultationStatus.PENDING_ACCEPTANCE, index=True)
    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    acceptance_deadline: datetime = Field(index=True, sa_type=UTCDateTime)

    fee: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    payment_status: PaymentStatus = Field(default=PaymentStatus.UNPAID)
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    chief_complaint: Optional[str] = None

    accepted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    rejected_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    rejection_reason: Optional[str] = None
    expired_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    room_id: Optional[str] = None
    room_url: Optional[str] = None
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    ended_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    cancelled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    cancelled_by: Optional[UUID] = None
    cancellation_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def is_overdue(self, now: datetime) -> bool:
        return (
            self.status == ConsultationStatus.PENDING_ACCEPTANCE
            and now > self.acceptance_deadline
        )
