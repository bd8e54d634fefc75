from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlmodel import Session, select
from database import get_session
from models import User, Appointment, AppointmentStatus, Prescription, Review, PatientRecord
from schemas import (
    UserResponse,
    DoctorProfileUpdate,
    AppointmentResponse,
    AppointmentDetailResponse,
    AppointmentDecision,
    AppointmentStatusUpdate,
    PrescriptionCreate,
    PrescriptionResponse,
    ReviewResponse,
    ReviewStats,
    PatientRecordResponse,
)
from dependencies import require_doctor
from datetime import datetime
from typing import List, Optional
from services import appointment_service
from validators.appointment_validator import validate_weekdays, validate_slot_duration
from utils.storage import read_profile_picture, save_attachment
from validators.id_validator import validate_id
from validators.time_validator import validate_time_range
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/doctor", tags=["Doctors"])

@router.get("/user", response_model=UserResponse)
def get_doctor_user(current_user: User = Depends(require_doctor)):
    """Get the signed-in doctor's profile"""
    return current_user

@router.put("/profile", response_model=UserResponse)
def update_doctor_profile(
    profile_data: DoctorProfileUpdate,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Update name, specialization and weekly availability"""
    updates = profile_data.model_dump(exclude_unset=True)

    if "availability_days" in updates and updates["availability_days"] is not None:
        updates["availability_days"] = validate_weekdays(updates["availability_days"])

    start = updates.get("availability_start") or current_user.availability_start
    end = updates.get("availability_end") or current_user.availability_end
    if "availability_start" in updates or "availability_end" in updates:
        validate_time_range(start, end)

    if updates.get("slot_duration") is not None:
        validate_slot_duration(updates["slot_duration"])

    for key, value in updates.items():
        if value is not None:
            setattr(current_user, key, value)
    current_user.updated_at = datetime.utcnow()

    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    logger.info(f"Doctor {current_user.id} updated profile")

    return current_user

@router.put("/profile/picture", response_model=UserResponse)
async def upload_doctor_profile_picture(
    file: UploadFile = File(...),
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Upload a profile picture and store its URL on the profile"""
    picture = await read_profile_picture(file)
    current_user.profile_picture = save_attachment(picture)
    current_user.updated_at = datetime.utcnow()

    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    logger.info(f"Doctor {current_user.id} uploaded a profile picture")

    return current_user

@router.get("/appointment/requests", response_model=List[AppointmentResponse])
def get_appointment_requests(
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Pending requests addressed to this doctor, soonest first"""
    return session.exec(
        select(Appointment)
        .where(
            Appointment.doctor_id == current_user.id,
            Appointment.status == AppointmentStatus.PENDING.value
        )
        .order_by(Appointment.date, Appointment.time)
    ).all()

@router.post("/appointment/accept", response_model=AppointmentResponse)
async def accept_appointment(
    decision: AppointmentDecision,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Accept a pending appointment request"""
    return await appointment_service.decide_appointment(session, current_user, decision.request_id, accept=True)

@router.post("/appointment/reject", response_model=AppointmentResponse)
async def reject_appointment(
    decision: AppointmentDecision,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Reject a pending appointment request"""
    return await appointment_service.decide_appointment(session, current_user, decision.request_id, accept=False)

@router.get("/appointments", response_model=List[AppointmentResponse])
def get_doctor_appointments(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """All of this doctor's appointments, optionally filtered by status"""
    statement = select(Appointment).where(Appointment.doctor_id == current_user.id)
    if status_filter:
        statement = statement.where(Appointment.status == status_filter)
    return session.exec(statement.order_by(Appointment.date.desc(), Appointment.time.desc())).all()

@router.get("/appointment/{appointment_id}", response_model=AppointmentDetailResponse)
def get_appointment_detail(
    appointment_id: str,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """One appointment with its prescriptions and reviews"""
    appointment = appointment_service.get_doctor_appointment(session, appointment_id, current_user.id)

    prescriptions = session.exec(
        select(Prescription)
        .where(Prescription.appointment_id == appointment.id)
        .order_by(Prescription.prescribed_at)
    ).all()
    reviews = session.exec(
        select(Review).where(Review.appointment_id == appointment.id)
    ).all()

    return AppointmentDetailResponse(
        **AppointmentResponse.model_validate(appointment).model_dump(),
        patient=UserResponse.model_validate(session.get(User, appointment.patient_id)),
        doctor=UserResponse.model_validate(current_user),
        prescriptions=[PrescriptionResponse.model_validate(p) for p in prescriptions],
        reviews=[ReviewResponse.model_validate(r) for r in reviews]
    )

@router.put("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    status_data: AppointmentStatusUpdate,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Mark an accepted appointment as attended, cancelled or absent"""
    return await appointment_service.update_appointment_status(
        session, current_user, appointment_id, status_data.status
    )

@router.post("/appointment/{appointment_id}/prescription", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
async def add_prescription(
    appointment_id: str,
    prescription_data: PrescriptionCreate,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Prescribe a medicine for one of this doctor's appointments"""
    return await appointment_service.add_prescription(
        session,
        current_user,
        appointment_id,
        medicine_name=prescription_data.medicine_name,
        frequency=prescription_data.frequency.model_dump(),
        duration_days=prescription_data.duration_days
    )

@router.get("/patients")
def get_doctor_patients(
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Distinct patients of this doctor with their latest appointment"""
    appointments = session.exec(
        select(Appointment)
        .where(Appointment.doctor_id == current_user.id)
        .order_by(Appointment.date.desc(), Appointment.time.desc())
    ).all()

    patients = {}
    for appointment in appointments:
        if appointment.patient_id in patients:
            continue
        patient = session.get(User, appointment.patient_id)
        if not patient:
            continue
        patients[appointment.patient_id] = {
            "patient": UserResponse.model_validate(patient),
            "last_appointment": AppointmentResponse.model_validate(appointment)
        }

    return list(patients.values())

@router.get("/patients/{patient_id}/records", response_model=PatientRecordResponse)
def get_patient_records(
    patient_id: str,
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Medical record of a patient who has an appointment with this doctor"""
    validate_id(patient_id, "patient ID")

    has_appointment = session.exec(
        select(Appointment.id).where(
            Appointment.doctor_id == current_user.id,
            Appointment.patient_id == patient_id
        )
    ).first()
    if not has_appointment:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view records of your own patients"
        )

    record = session.exec(select(PatientRecord).where(PatientRecord.patient_id == patient_id)).first()
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient record not found"
        )
    return record

@router.get("/reviews", response_model=List[ReviewResponse])
def get_doctor_reviews(
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Reviews left for this doctor, newest first"""
    return session.exec(
        select(Review)
        .where(Review.reviewee_id == current_user.id)
        .order_by(Review.created_at.desc())
    ).all()

@router.get("/reviews/stats", response_model=ReviewStats)
def get_review_stats(
    current_user: User = Depends(require_doctor),
    session: Session = Depends(get_session)
):
    """Average rating, total and per-star distribution"""
    return appointment_service.review_stats(session, current_user.id)
