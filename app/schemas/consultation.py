from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from app.db.models import ConsultationStatus, PaymentStatus
from app.services.consultation_service import Decision


class ConsultationCreate(BaseModel):
    patient_id: UUID
    practitioner_id: UUID
    chief_complaint: Optional[str] = Field(default=None, max_length=2000)


class ConsultationRespond(BaseModel):
    decision: Decision
    rejection_reason: Optional[str] = Field(default=None, max_length=500)


class PaymentCapture(BaseModel):
    method: str = Field(min_length=1, max_length=50)


class SessionOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class SessionEnd(BaseModel):
    outcome: SessionOutcome


class ConsultationAction(str, Enum):
    CANCEL = "CANCEL"


class ConsultationPatch(BaseModel):
    action: ConsultationAction
    reason: Optional[str] = Field(default=None, max_length=500)


class ConsultationResponse(BaseModel):
    id: UUID
    patient_id: UUID
    practitioner_id: UUID
    status: ConsultationStatus
    version: int
    created_at: datetime
    acceptance_deadline: datetime
    seconds_remaining: int = 0
    timeout_seconds: int
    fee: Decimal
    payment_status: PaymentStatus
    requires_payment: bool
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    chief_complaint: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    expired_at: Optional[datetime] = None
    room_id: Optional[str] = None
    room_url: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[UUID] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class ConsultationListResponse(BaseModel):
    requests: List[ConsultationResponse]
