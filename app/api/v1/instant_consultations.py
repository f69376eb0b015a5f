from fastapi import APIRouter, Depends, Query, status
from typing import Literal
from uuid import UUID

from app.api.deps import get_consultation_service, get_current_caller
from app.db.models import ConsultationStatus, InstantConsultation
from app.schemas.consultation import (
    ConsultationCreate,
    ConsultationListResponse,
    ConsultationPatch,
    ConsultationRespond,
    ConsultationResponse,
    PaymentCapture,
    SessionEnd,
)
from app.services.consultation_service import ConsultationService

router = APIRouter()

def construct_response(consultation: InstantConsultation, service: ConsultationService) -> ConsultationResponse:
    remaining = 0
    if consultation.status == ConsultationStatus.PENDING_ACCEPTANCE:
        delta = consultation.acceptance_deadline - service.clock()
        remaining = max(0, int(delta.total_seconds()))

    return ConsultationResponse(
        **consultation.model_dump(),
        seconds_remaining=remaining,
        timeout_seconds=service.timeout_seconds,
        requires_payment=not consultation.is_paid,
    )

@router.post("", response_model=ConsultationResponse, status_code=status.HTTP_201_CREATED)
async def create_instant_consultation(
    request: ConsultationCreate,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    consultation = await service.create_request(
        request.patient_id, request.practitioner_id, request.chief_complaint, caller_id
    )
    return construct_response(consultation, service)

@router.get("", response_model=ConsultationListResponse)
async def list_instant_consultations(
    role: Literal["patient", "practitioner"] = Query("patient"),
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    if role == "practitioner":
        consultations = await service.list_pending_for_practitioner(caller_id)
    else:
        consultations = await service.list_active_for_patient(caller_id)
    return ConsultationListResponse(
        requests=[construct_response(c, service) for c in consultations]
    )

@router.get("/{consultation_id}", response_model=ConsultationResponse)
async def read_instant_consultation(
    consultation_id: UUID,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    consultation = await service.get_status(consultation_id, caller_id)
    return construct_response(consultation, service)

@router.post("/{consultation_id}/respond", response_model=ConsultationResponse)
async def respond_to_instant_consultation(
    consultation_id: UUID,
    request: ConsultationRespond,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    consultation = await service.respond(
        consultation_id, caller_id, request.decision, request.rejection_reason
    )
    return construct_response(consultation, service)

@router.post("/{consultation_id}/payment", response_model=ConsultationResponse)
async def pay_for_instant_consultation(
    consultation_id: UUID,
    request: PaymentCapture,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    consultation = await service.capture_payment(consultation_id, caller_id, request.method)
    return construct_response(consultation, service)

@router.post("/{consultation_id}/start", response_model=ConsultationResponse)
async def start_instant_consultation(
    consultation_id: UUID,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    consultation = await service.start_session(consultation_id, caller_id)
    return construct_response(consultation, service)

@router.post("/{consultation_id}/end", response_model=ConsultationResponse)
async def end_instant_consultation(
    consultation_id: UUID,
    request: SessionEnd,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    outcome = ConsultationStatus(request.outcome.value)
    consultation = await service.end_session(consultation_id, caller_id, outcome)
    return construct_response(consultation, service)

@router.patch("/{consultation_id}", response_model=ConsultationResponse)
async def update_instant_consultation(
    consultation_id: UUID,
    request: ConsultationPatch,
    caller_id: UUID = Depends(get_current_caller),
    service: ConsultationService = Depends(get_consultation_service),
):
    # CANCEL is the only action the schema admits
    consultation = await service.cancel(consultation_id, caller_id, request.reason)
    return construct_response(consultation, service)
