from typing import Optional

from fastapi import HTTPException, status


class ConsultationError(HTTPException):
    """
    Base for every error the consultation engine reports.

    Carries a stable machine-readable ``code`` next to the HTTP status so
    polling clients can branch on it; FastAPI renders the body as
    ``{"detail": {"code": ..., "message": ...}}``.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "CONSULTATION_ERROR"
    default_message: str = "Consultation request failed"

    def __init__(self, message: Optional[str] = None, *, current_status: Optional[str] = None):
        self.message = message or self.default_message
        self.current_status = current_status
        detail = {"code": self.code, "message": self.message}
        if current_status is not None:
            detail["current_status"] = current_status
        super().__init__(status_code=self.status_code, detail=detail)


class ValidationError(ConsultationError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"
    default_message = "Malformed request"


class DoctorBusy(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    code = "DOCTOR_BUSY"
    default_message = "Practitioner already has an active consultation request"


class PatientBusy(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    code = "PATIENT_BUSY"
    default_message = "You already have an active consultation"


class PractitionerUnavailable(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    code = "PRACTITIONER_UNAVAILABLE"
    default_message = "Practitioner is not currently available for instant consultations"


class Unauthorized(ConsultationError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "UNAUTHORIZED"
    default_message = "You are not a participant of this consultation"


class NotFound(ConsultationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Consultation not found"


class InvalidTransition(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"
    default_message = "Operation is not allowed in the current status"


class DeadlinePassed(InvalidTransition):
    code = "DEADLINE_PASSED"
    default_message = "Request has expired"


class NotPayable(InvalidTransition):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Consultation cannot be paid for in its current status"


class PaymentRequired(ConsultationError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PAYMENT_REQUIRED"
    default_message = "Payment is required before the session can start"


class PaymentFailed(ConsultationError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PAYMENT_FAILED"
    default_message = "Payment was declined"


class ConcurrencyConflict(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONCURRENCY_CONFLICT"
    default_message = "Consultation changed while the request was processed"


class CollaboratorUnavailable(ConsultationError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "COLLABORATOR_UNAVAILABLE"
    default_message = "An upstream service is unavailable"


class ProvisioningFailed(ConsultationError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PROVISIONING_FAILED"
    default_message = "Could not allocate a video room"
