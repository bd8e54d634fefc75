from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlmodel import Session, select
from database import get_session
from models import User, UserRole, Appointment, PatientRecord
from schemas import (
    UserResponse,
    PatientProfileUpdate,
    AvailableSlotsResponse,
    AppointmentRequestCreate,
    AppointmentResponse,
    ReviewCreate,
    ReviewResponse,
    PatientRecordCreate,
    PatientRecordResponse,
)
from dependencies import require_patient
from datetime import datetime, timedelta
from typing import List, Optional
from services import appointment_service
from validators.appointment_validator import generate_available_slots, slot_length
from validators.business_rules import get_business_rules
from utils.storage import read_profile_picture, save_attachment
from validators.id_validator import validate_id
from validators.time_validator import parse_date_string
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patient", tags=["Patients"])

@router.get("/user", response_model=UserResponse)
def get_patient_user(current_user: User = Depends(require_patient)):
    """Get the signed-in patient's profile"""
    return current_user

@router.put("/profile", response_model=UserResponse)
def update_patient_profile(
    profile_data: PatientProfileUpdate,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Update patient profile"""
    for key, value in profile_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(current_user, key, value)
    current_user.updated_at = datetime.utcnow()

    session.add(current_user)
    session.commit()
    session.refresh(current_user)

    return current_user

@router.put("/profile/picture", response_model=UserResponse)
async def upload_patient_profile_picture(
    file: UploadFile = File(...),
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Upload a profile picture and store its URL on the profile"""
    picture = await read_profile_picture(file)
    current_user.profile_picture = save_attachment(picture)
    current_user.updated_at = datetime.utcnow()

    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    logger.info(f"Patient {current_user.id} uploaded a profile picture")

    return current_user

@router.get("/doctors", response_model=List[UserResponse])
def list_doctors(
    specialization: Optional[str] = None,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """All doctors, optionally by specialization"""
    statement = select(User).where(User.role == UserRole.DOCTOR)
    if specialization:
        statement = statement.where(User.specialization == specialization)
    return session.exec(statement.order_by(User.name)).all()

@router.get("/doctors/{doctor_id}", response_model=UserResponse)
def get_doctor(
    doctor_id: str,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Get one doctor"""
    validate_id(doctor_id, "doctor ID")
    return appointment_service.get_doctor_or_404(session, doctor_id)

@router.get("/doctors/{doctor_id}/slots", response_model=AvailableSlotsResponse)
def get_available_slots(
    doctor_id: str,
    date: str,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Free slots of a doctor on a date"""
    validate_id(doctor_id, "doctor ID")
    slot_date = parse_date_string(date)
    doctor = appointment_service.get_doctor_or_404(session, doctor_id)

    return AvailableSlotsResponse(
        doctor_id=doctor.id,
        date=slot_date,
        slot_duration=slot_length(doctor),
        slots=generate_available_slots(session, doctor, slot_date)
    )

@router.post("/appointment/request", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def request_appointment(
    request_data: AppointmentRequestCreate,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Request an appointment with a doctor"""
    return await appointment_service.request_appointment(
        session,
        current_user,
        doctor_id=request_data.doctor_id,
        date_str=request_data.date,
        time_str=request_data.time,
        reason=request_data.reason
    )

@router.get("/appointments", response_model=List[AppointmentResponse])
def get_patient_appointments(
    time: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    doctor_id: Optional[str] = None,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Appointment history, filterable by creation window, status and doctor"""
    statement = select(Appointment).where(Appointment.patient_id == current_user.id)

    if time:
        windows = get_business_rules().HISTORY_WINDOWS
        if time not in windows:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid time filter. Use one of: {', '.join(windows)}"
            )
        since = datetime.utcnow() - timedelta(days=windows[time])
        statement = statement.where(Appointment.created_at >= since)

    if status_filter:
        statement = statement.where(Appointment.status == status_filter)

    if doctor_id:
        validate_id(doctor_id, "doctor ID")
        statement = statement.where(Appointment.doctor_id == doctor_id)

    return session.exec(statement.order_by(Appointment.created_at.desc())).all()

@router.post("/appointments/{appointment_id}/review", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def review_appointment(
    appointment_id: str,
    review_data: ReviewCreate,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Review the doctor of an attended appointment"""
    return await appointment_service.submit_review(
        session, current_user, appointment_id, review_data.rating, review_data.comment
    )

@router.get("/records", response_model=PatientRecordResponse)
def get_my_records(
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Get the caller's medical record"""
    record = session.exec(select(PatientRecord).where(PatientRecord.patient_id == current_user.id)).first()
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient record not found"
        )
    return record

@router.post("/records", response_model=PatientRecordResponse)
def save_my_records(
    record_data: PatientRecordCreate,
    current_user: User = Depends(require_patient),
    session: Session = Depends(get_session)
):
    """Create or update the caller's medical record"""
    values = record_data.model_dump()
    values["gender"] = record_data.gender
    values["blood_group"] = record_data.blood_group.value

    record = session.exec(select(PatientRecord).where(PatientRecord.patient_id == current_user.id)).first()
    if record:
        for key, value in values.items():
            setattr(record, key, value)
        record.updated_at = datetime.utcnow()
    else:
        record = PatientRecord(patient_id=current_user.id, **values)

    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info(f"Patient record saved for {current_user.id}")

    return record
