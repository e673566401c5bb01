"""Scheduling router - FastAPI endpoints for recalls and rescheduling"""

import datetime as dt
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...config import CLINIC_TIMEZONE
from ...database import get_db
from ...services.analytics_service import AnalyticsService
from ...services.notification_service import NotificationService
from .recall_service import RecallService
from .repository import SchedulingRepository
from .reschedule_service import RescheduleService
from .schemas import (
    AcceptRescheduleRequest,
    AlternativeDentist,
    BookingResponse,
    BookSlotRequest,
    BulkRescheduleRequest,
    BulkRescheduleResult,
    ClinicSlotsResponse,
    CreateRecallRequest,
    RecallRecord,
    RecallSlot,
    RegenerateSlotsRequest,
    RescheduleOptions,
    RescheduleReason,
    RescheduleResult,
    RescheduleSuggestion,
    SendSuggestionsRequest,
    SnoozeRequest,
)
from .time_calculator import get_clinic_time_slots

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scheduling"])

# HTTP status for a failed RescheduleResult
RESULT_STATUS = {"slot_unavailable": 409, "not_found": 404, "invalid_date": 422}


def get_scheduling_store(db: Session = Depends(get_db)) -> SchedulingRepository:
    return SchedulingRepository(db)


def get_notifier(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_analytics(request: Request) -> AnalyticsService:
    """The process-wide analytics queue created in the lifespan"""
    return request.app.state.analytics


def get_recall_service(
    store: SchedulingRepository = Depends(get_scheduling_store),
    notifier: NotificationService = Depends(get_notifier),
    analytics: AnalyticsService = Depends(get_analytics),
) -> RecallService:
    """Dependency injection for RecallService"""
    return RecallService(store, notifier, analytics)


def get_reschedule_service(
    store: SchedulingRepository = Depends(get_scheduling_store),
    notifier: NotificationService = Depends(get_notifier),
    analytics: AnalyticsService = Depends(get_analytics),
) -> RescheduleService:
    """Dependency injection for RescheduleService"""
    return RescheduleService(store, notifier, analytics)


def result_response(result: RescheduleResult) -> JSONResponse:
    status_code = 200 if result.success else RESULT_STATUS.get(result.errorCode, 500)
    if not result.success:
        logger.info(f"Reschedule request refused ({status_code}): {result.errorCode} - {result.error}")
    return JSONResponse(status_code=status_code, content=result.model_dump())


# ============================================================================
# RECALLS
# ============================================================================


@router.post("/recalls", response_model=RecallRecord, status_code=201)
async def create_recall(
    data: CreateRecallRequest,
    service: RecallService = Depends(get_recall_service),
):
    """Create a recall after a clinical event; stored patient modifiers apply when none are sent"""
    return await service.create_recall(
        patient_id=data.patientId,
        treatment_key=data.treatmentKey,
        dentist_id=data.dentistId,
        source_appointment_id=data.sourceAppointmentId,
        base_date=data.baseDate,
        modifiers=data.modifiers,
    )


@router.get("/recalls/{recall_id}", response_model=RecallRecord)
async def get_recall(recall_id: str, service: RecallService = Depends(get_recall_service)):
    return await service.get_recall(recall_id)


@router.post("/recalls/{recall_id}/book", response_model=BookingResponse)
async def book_recall_slot(
    recall_id: str,
    data: BookSlotRequest,
    service: RecallService = Depends(get_recall_service),
):
    """Book one of the recall's slots (or any other free, non-emergency slot of the same dentist)"""
    appointment_id = await service.book_suggested_slot(
        recall_id, RecallSlot(date=data.date, time=data.time)
    )
    return BookingResponse(appointmentId=appointment_id)


@router.post("/recalls/{recall_id}/snooze", response_model=RecallRecord)
async def snooze_recall(
    recall_id: str,
    data: SnoozeRequest,
    service: RecallService = Depends(get_recall_service),
):
    return await service.snooze_recall(recall_id, data.days)


@router.post("/recalls/{recall_id}/decline", response_model=RecallRecord)
async def decline_recall(recall_id: str, service: RecallService = Depends(get_recall_service)):
    return await service.decline_recall(recall_id)


@router.post("/recalls/{recall_id}/regenerate", response_model=RecallRecord)
async def regenerate_recall_slots(
    recall_id: str,
    data: Optional[RegenerateSlotsRequest] = None,
    service: RecallService = Depends(get_recall_service),
):
    modifiers = data.modifiers if data else None
    return await service.regenerate_slots(recall_id, modifiers)


# ============================================================================
# RESCHEDULING
# ============================================================================


@router.get(
    "/appointments/{appointment_id}/reschedule-options",
    response_model=List[RescheduleSuggestion],
)
async def get_reschedule_options(
    appointment_id: str,
    reason: RescheduleReason = Query("patient_requested"),
    searchDays: int = Query(14, ge=1, le=90),
    sameDentist: bool = Query(True),
    minScore: int = Query(60, ge=0, le=100),
    maxResults: Optional[int] = Query(None, ge=1),
    service: RescheduleService = Depends(get_reschedule_service),
):
    """Ranked alternative slots, best first, each with its score and reasons"""
    options = RescheduleOptions(
        reason=reason,
        searchDays=searchDays,
        sameDentist=sameDentist,
        minScore=minScore,
        maxResults=maxResults,
    )
    return await service.find_reschedule_options(appointment_id, options)


@router.post("/appointments/{appointment_id}/reschedule", response_model=RescheduleResult)
async def accept_reschedule(
    appointment_id: str,
    data: AcceptRescheduleRequest,
    service: RescheduleService = Depends(get_reschedule_service),
):
    result = await service.accept_reschedule_suggestion(
        appointment_id, data.date, data.time, data.dentistId
    )
    return result_response(result)


@router.post(
    "/appointments/{appointment_id}/reschedule-options/send",
    response_model=RescheduleResult,
)
async def send_reschedule_options(
    appointment_id: str,
    data: SendSuggestionsRequest,
    service: RescheduleService = Depends(get_reschedule_service),
):
    result = await service.send_reschedule_suggestions(appointment_id, data.suggestions)
    return result_response(result)


@router.post("/dentists/{dentist_id}/bulk-reschedule", response_model=BulkRescheduleResult)
async def bulk_reschedule(
    dentist_id: str,
    data: BulkRescheduleRequest,
    service: RescheduleService = Depends(get_reschedule_service),
):
    """Reschedule options for every appointment of a dentist in a date range (e.g. vacation)"""
    return await service.bulk_reschedule_for_dentist(
        dentist_id, data.startDate, data.endDate, data.reason
    )


@router.get("/dentists/{dentist_id}/alternatives", response_model=List[AlternativeDentist])
async def alternative_dentists(
    dentist_id: str,
    date: dt.date = Query(...),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return await service.find_alternative_dentists(dentist_id, date)


# ============================================================================
# CLINIC TIME
# ============================================================================


@router.get("/clinic-time/slots", response_model=ClinicSlotsResponse)
async def clinic_time_slots(date: dt.date = Query(...)):
    """Bookable HH:MM boundaries for a clinic day (lead time applied for today)"""
    return ClinicSlotsResponse(
        date=date, timezone=CLINIC_TIMEZONE, slots=get_clinic_time_slots(date)
    )
