from sqlmodel import SQLModel
from .consultation import (
    InstantConsultation,
    ConsultationStatus,
    PaymentStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    PAYABLE_STATUSES,
    can_transition,
)
from .audit_log import ConsultationEvent

__all__ = [
    "SQLModel",
    "InstantConsultation",
    "ConsultationStatus",
    "PaymentStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "PAYABLE_STATUSES",
    "can_transition",
    "ConsultationEvent",
]
