import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.auth.dependencies import TenantScope, get_current_user, require_admin
from clinic_backend.database import SessionLocal
from clinic_backend.models.appointment import Appointment, AppointmentStatus, AppointmentType
from clinic_backend.scheduling.engine import MAX_NOTES_LENGTH, AppointmentFilters, SchedulingEngine, parse_status
from clinic_backend.scheduling.errors import SchedulingError, TransientStoreError
from clinic_backend.scheduling.store import AppointmentStore
from clinic_backend.scheduling.suggestions import ConflictResult

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

UNAVAILABLE_DETAIL = 'The appointment service is temporarily unavailable. Please try again.'
RESCHEDULE_FIELDS = ('date_time', 'duration', 'dentist_id')
DETAIL_FIELDS = ('notes', 'room')

scheduling_engine = SchedulingEngine(AppointmentStore(SessionLocal))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_enum_value(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: str = Field(alias='patientId', min_length=1)
    dentist_id: str = Field(alias='dentistId', min_length=1)
    date_time: datetime = Field(alias='dateTime')
    duration: int
    type: AppointmentType
    notes: str | None = None
    room: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('type', mode='before')
    @classmethod
    def validate_type(cls, value):
        return _normalize_enum_value(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateAppointmentRequest(BaseModel):
    status: AppointmentStatus | None = None
    date_time: datetime | None = Field(default=None, alias='dateTime')
    duration: int | None = None
    dentist_id: str | None = Field(default=None, alias='dentistId')
    type: AppointmentType | None = None
    notes: str | None = None
    room: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('status', 'type', mode='before')
    @classmethod
    def validate_enum_case(cls, value):
        return _normalize_enum_value(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class PatientSummary(BaseModel):
    id: str
    first_name: str = Field(alias='firstName')
    last_name: str = Field(alias='lastName')
    phone: str | None = None
    email: str | None = None

    class Config:
        populate_by_name = True


class DentistSummary(BaseModel):
    id: str
    first_name: str | None = Field(default=None, alias='firstName')
    last_name: str | None = Field(default=None, alias='lastName')

    class Config:
        populate_by_name = True


class AppointmentResponse(BaseModel):
    id: str
    tenant_id: str = Field(alias='tenantId')
    patient_id: str = Field(alias='patientId')
    dentist_id: str = Field(alias='dentistId')
    date_time: datetime = Field(alias='dateTime')
    end_time: datetime = Field(alias='endTime')
    duration: int
    type: AppointmentType
    status: AppointmentStatus
    notes: str | None = None
    room: str | None = None
    created_at: datetime | None = Field(default=None, alias='createdAt')
    updated_at: datetime | None = Field(default=None, alias='updatedAt')
    patient: PatientSummary
    dentist: DentistSummary

    class Config:
        populate_by_name = True

    @field_validator('date_time', 'end_time', 'created_at', 'updated_at')
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class AppointmentEnvelope(BaseModel):
    appointment: AppointmentResponse


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]


class SuggestedTimeResponse(BaseModel):
    date_time: datetime = Field(alias='dateTime')
    label: str

    class Config:
        populate_by_name = True

    @field_validator('date_time')
    @classmethod
    def mark_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ConflictResponse(BaseModel):
    error: str
    conflict: bool = True
    suggested_times: list[SuggestedTimeResponse] | None = Field(default=None, alias='suggestedTimes')
    message: str

    class Config:
        populate_by_name = True


class MessageResponse(BaseModel):
    message: str


def get_scheduling_engine() -> SchedulingEngine:
    return scheduling_engine


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        tenant_id=appointment.tenant_id,
        patient_id=appointment.patient_id,
        dentist_id=appointment.dentist_id,
        date_time=appointment.start_time,
        end_time=appointment.end_time,
        duration=appointment.duration_minutes,
        type=appointment.appointment_type,
        status=appointment.status,
        notes=appointment.notes,
        room=appointment.room,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
        patient=PatientSummary(
            id=appointment.patient.id,
            first_name=appointment.patient.first_name,
            last_name=appointment.patient.last_name,
            phone=appointment.patient.phone,
            email=appointment.patient.email,
        ),
        dentist=DentistSummary(
            id=appointment.dentist.id,
            first_name=appointment.dentist.first_name,
            last_name=appointment.dentist.last_name,
        ),
    )


def conflict_response(result: ConflictResult) -> JSONResponse:
    body = ConflictResponse(
        error=result.error,
        suggested_times=[
            SuggestedTimeResponse(date_time=suggestion.start, label=suggestion.label)
            for suggestion in result.suggestions
        ] or None,
        message=result.message,
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=body.model_dump(mode='json', by_alias=True, exclude_none=True),
    )


def raise_http_error(exc: Exception) -> NoReturn:
    if isinstance(exc, TransientStoreError):
        logger.error('Appointment store unavailable: %s', exc.message, exc_info=exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UNAVAILABLE_DETAIL) from exc
    if isinstance(exc, SchedulingError):
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    logger.exception('Unexpected database failure')
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UNAVAILABLE_DETAIL) from exc


def day_range(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


@router.post('', response_model=AppointmentEnvelope, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: TenantScope = Depends(get_current_user),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    try:
        result = engine.book(
            tenant_id=current_user.tenant_id,
            patient_id=data.patient_id,
            dentist_id=data.dentist_id,
            start=data.date_time,
            duration=data.duration,
            appointment_type=data.type,
            notes=data.notes,
            room=data.room,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    if isinstance(result, ConflictResult):
        return conflict_response(result)
    return AppointmentEnvelope(appointment=to_response(result))


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    day: date | None = Query(default=None, alias='date'),
    dentist_id: str | None = Query(default=None, alias='dentistId'),
    patient_id: str | None = Query(default=None, alias='patientId'),
    status_filter: str | None = Query(default=None, alias='status'),
    current_user: TenantScope = Depends(get_current_user),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    try:
        filters = AppointmentFilters(
            dentist_id=dentist_id,
            patient_id=patient_id,
            date_range=day_range(day) if day else None,
            status=parse_status(status_filter) if status_filter else None,
            caller_role=current_user.role,
            caller_user_id=current_user.user_id,
        )
        appointments = engine.list_appointments(current_user.tenant_id, filters)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return AppointmentListResponse(appointments=[to_response(appointment) for appointment in appointments])


@router.get('/{appointment_id}', response_model=AppointmentEnvelope)
def get_appointment(
    appointment_id: str,
    current_user: TenantScope = Depends(get_current_user),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    try:
        appointment = engine.get(current_user.tenant_id, appointment_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return AppointmentEnvelope(appointment=to_response(appointment))


@router.patch('', response_model=AppointmentEnvelope)
def update_appointment(
    data: UpdateAppointmentRequest,
    appointment_id: str = Query(..., alias='id'),
    current_user: TenantScope = Depends(get_current_user),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    wants_reschedule = any(getattr(data, name) is not None for name in RESCHEDULE_FIELDS)
    if wants_reschedule and data.status is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Change the status and the schedule in separate requests.',
        )

    detail_changes = {name: getattr(data, name) for name in DETAIL_FIELDS if name in data.model_fields_set}
    if data.type is not None:
        detail_changes['appointment_type'] = data.type

    if not wants_reschedule and data.status is None and not detail_changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No changes supplied.')

    tenant_id = current_user.tenant_id
    try:
        if wants_reschedule:
            result = engine.reschedule(
                tenant_id,
                appointment_id,
                new_start=data.date_time,
                new_duration=data.duration,
                new_dentist_id=data.dentist_id,
                **detail_changes,
            )
            if isinstance(result, ConflictResult):
                return conflict_response(result)
            appointment = result
        elif data.status is not None:
            appointment = engine.transition(tenant_id, appointment_id, data.status, **detail_changes)
        else:
            appointment = engine.update_details(tenant_id, appointment_id, **detail_changes)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return AppointmentEnvelope(appointment=to_response(appointment))


@router.delete('', response_model=MessageResponse)
def delete_appointment(
    appointment_id: str = Query(..., alias='id'),
    current_user: TenantScope = Depends(require_admin),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    try:
        engine.delete(current_user.tenant_id, appointment_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return MessageResponse(message='Appointment deleted.')
