"""
Appointment workflow: request, accept/reject, status updates, prescriptions
and reviews.

Transitions are single conditional UPDATEs on the expected status, so two
concurrent decisions on one request cannot both succeed. Notifications are
queued in the same transaction as the workflow write and dispatched after
commit.
"""

import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from models import (
    User,
    UserRole,
    Appointment,
    AppointmentStatus,
    Prescription,
    Review,
    Notification,
    NotificationType,
)
from services.notification_service import queue_notification, notification_dispatcher
from services.websocket_manager import EventType
from validators.appointment_validator import (
    validate_doctor_availability,
    validate_slot_not_booked,
    validate_final_status,
    REVIEWABLE_STATUSES,
)
from validators.id_validator import validate_id
from validators.time_validator import parse_date_string, validate_time_format

logger = logging.getLogger(__name__)

DOSE_TIMES = ("morning", "afternoon", "evening", "night")


def appointment_payload(appointment: Appointment) -> Dict[str, Any]:
    return {
        "id": appointment.id,
        "patient_id": appointment.patient_id,
        "doctor_id": appointment.doctor_id,
        "date": appointment.date,
        "time": appointment.time,
        "reason": appointment.reason,
        "status": appointment.status,
        "created_at": appointment.created_at,
        "updated_at": appointment.updated_at,
    }


def event_data(appointment: Appointment, **extra) -> Dict[str, Any]:
    data = {
        "appointment_id": appointment.id,
        "status": appointment.status,
        "appointment": appointment_payload(appointment),
    }
    data.update(extra)
    return jsonable_encoder(data)


def get_doctor_or_404(session: Session, doctor_id: str) -> User:
    doctor = session.get(User, doctor_id)
    if not doctor or doctor.role != UserRole.DOCTOR:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
    return doctor


def get_doctor_appointment(session: Session, appointment_id: str, doctor_id: str) -> Appointment:
    validate_id(appointment_id, "appointment ID")
    appointment = session.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")
    if appointment.doctor_id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized: This appointment is not assigned to you"
        )
    return appointment


async def dispatch_after_commit(session: Session, notifications: List[Notification]) -> None:
    for notification in notifications:
        session.refresh(notification)
    await notification_dispatcher.dispatch(session, notifications)


def apply_transition(
    session: Session,
    appointment_id: str,
    doctor_id: str,
    expected: AppointmentStatus,
    new_status: str,
    exclusive_slot: bool = False,
) -> Appointment:
    """
    Move an appointment from `expected` to `new_status` with one conditional UPDATE.

    With `exclusive_slot`, the update only matches while no other accepted
    appointment holds the same doctor, date and time. When nothing matches,
    the current row is inspected to report why. The caller commits.
    """
    statement = update(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.doctor_id == doctor_id,
        Appointment.status == expected.value,
    )
    if exclusive_slot:
        other = aliased(Appointment)
        taken = (
            select(other.id)
            .where(
                other.doctor_id == Appointment.doctor_id,
                other.date == Appointment.date,
                other.time == Appointment.time,
                other.status == AppointmentStatus.ACCEPTED.value,
                other.id != Appointment.id,
            )
            .correlate(Appointment.__table__)
            .exists()
        )
        statement = statement.where(~taken)

    statement = statement.values(status=new_status, updated_at=datetime.utcnow())
    statement = statement.execution_options(synchronize_session=False)

    try:
        result = session.execute(statement)
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This time slot is already booked"
        )

    if result.rowcount != 1:
        session.rollback()
        appointment = get_doctor_appointment(session, appointment_id, doctor_id)
        if appointment.status != expected.value:
            if expected == AppointmentStatus.PENDING:
                detail = "Appointment is not pending"
            else:
                detail = f"Appointment must be {expected.value} to update its status"
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This time slot is already booked"
        )

    appointment = session.get(Appointment, appointment_id)
    session.refresh(appointment)
    return appointment


async def request_appointment(
    session: Session,
    patient: User,
    doctor_id: Optional[str],
    date_str: str,
    time_str: str,
    reason: str,
) -> Appointment:
    """Create a pending appointment and notify both parties"""
    validate_id(doctor_id, "doctor ID")
    appointment_date = parse_date_string(date_str)
    validate_time_format(time_str)

    doctor = get_doctor_or_404(session, doctor_id)
    validate_doctor_availability(doctor, appointment_date, time_str)
    validate_slot_not_booked(session, doctor.id, appointment_date, time_str)

    appointment = Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        date=appointment_date,
        time=time_str,
        reason=reason.strip(),
        status=AppointmentStatus.PENDING.value,
    )
    session.add(appointment)

    when = f"{appointment_date.isoformat()} at {time_str}"
    notifications = [
        queue_notification(
            session,
            user_id=doctor.id,
            message=f"New appointment request from {patient.name} for {when}",
            notification_type=NotificationType.APPOINTMENT_REQUEST,
            event=EventType.NEW_APPOINTMENT_REQUEST,
            appointment_id=appointment.id,
            payload=event_data(appointment, patient=patient.name),
        ),
        queue_notification(
            session,
            user_id=patient.id,
            message=f"Your appointment request with Dr. {doctor.name} for {when} has been sent",
            notification_type=NotificationType.APPOINTMENT_REQUEST_SENT,
            event=EventType.APPOINTMENT_REQUEST_SENT,
            appointment_id=appointment.id,
            payload=event_data(appointment, doctor=doctor.name),
        ),
    ]
    session.commit()
    session.refresh(appointment)
    logger.info(f"Appointment {appointment.id} requested by patient {patient.id} with doctor {doctor.id} for {when}")

    await dispatch_after_commit(session, notifications)
    return appointment


async def decide_appointment(session: Session, doctor: User, request_id: Optional[str], accept: bool) -> Appointment:
    """Accept or reject a pending request; only the assigned doctor may decide"""
    validate_id(request_id, "request ID")

    if accept:
        appointment = apply_transition(
            session, request_id, doctor.id,
            expected=AppointmentStatus.PENDING,
            new_status=AppointmentStatus.ACCEPTED.value,
            exclusive_slot=True,
        )
        notification_type = NotificationType.APPOINTMENT_ACCEPTED
        verb = "accepted"
    else:
        appointment = apply_transition(
            session, request_id, doctor.id,
            expected=AppointmentStatus.PENDING,
            new_status=AppointmentStatus.REJECTED.value,
        )
        notification_type = NotificationType.APPOINTMENT_REJECTED
        verb = "rejected"

    patient = session.get(User, appointment.patient_id)
    patient_name = patient.name if patient else "the patient"
    when = f"{appointment.date.isoformat()} at {appointment.time}"
    notifications = [
        queue_notification(
            session,
            user_id=appointment.patient_id,
            message=f"Your appointment with Dr. {doctor.name} on {when} has been {verb}",
            notification_type=notification_type,
            event=EventType.APPOINTMENT_UPDATE,
            appointment_id=appointment.id,
            payload=event_data(appointment),
        ),
        queue_notification(
            session,
            user_id=doctor.id,
            message=f"You {verb} the appointment with {patient_name} on {when}",
            notification_type=notification_type,
            event=EventType.APPOINTMENT_UPDATE,
            appointment_id=appointment.id,
            payload=event_data(appointment),
        ),
    ]

    try:
        session.commit()
    except IntegrityError:
        # Lost the slot to a concurrent accept between the UPDATE and the commit
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This time slot is already booked"
        )

    session.refresh(appointment)
    logger.info(f"Appointment {appointment.id} {verb} by doctor {doctor.id}")

    await dispatch_after_commit(session, notifications)
    return appointment


async def update_appointment_status(session: Session, doctor: User, appointment_id: str, new_status: str) -> Appointment:
    """Record the outcome of an accepted appointment"""
    validate_id(appointment_id, "appointment ID")
    validate_final_status(new_status)

    appointment = apply_transition(
        session, appointment_id, doctor.id,
        expected=AppointmentStatus.ACCEPTED,
        new_status=new_status,
    )

    patient = session.get(User, appointment.patient_id)
    patient_name = patient.name if patient else "the patient"
    when = f"{appointment.date.isoformat()} at {appointment.time}"
    notifications = [
        queue_notification(
            session,
            user_id=appointment.patient_id,
            message=f"Your appointment with Dr. {doctor.name} on {when} has been marked as {new_status}",
            notification_type=NotificationType.APPOINTMENT_STATUS_UPDATED,
            event=EventType.APPOINTMENT_UPDATE,
            appointment_id=appointment.id,
            payload=event_data(appointment),
        ),
        queue_notification(
            session,
            user_id=doctor.id,
            message=f"You marked the appointment with {patient_name} on {when} as {new_status}",
            notification_type=NotificationType.APPOINTMENT_STATUS_UPDATED,
            event=EventType.APPOINTMENT_UPDATE,
            appointment_id=appointment.id,
            payload=event_data(appointment),
        ),
    ]
    session.commit()
    session.refresh(appointment)
    logger.info(f"Appointment {appointment.id} marked {new_status} by doctor {doctor.id}")

    await dispatch_after_commit(session, notifications)
    return appointment


def describe_frequency(prescription: Prescription) -> str:
    parts = []
    for time_of_day in DOSE_TIMES:
        doses = getattr(prescription, time_of_day)
        if doses > 0:
            parts.append(f"{doses} dose{'s' if doses > 1 else ''} at {time_of_day}")
    return ", ".join(parts)


async def add_prescription(
    session: Session,
    doctor: User,
    appointment_id: str,
    medicine_name: str,
    frequency: Dict[str, int],
    duration_days: int,
) -> Prescription:
    """Attach a prescription to one of the doctor's appointments"""
    if sum(frequency.get(time_of_day, 0) for time_of_day in DOSE_TIMES) == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one dose must be specified"
        )

    appointment = get_doctor_appointment(session, appointment_id, doctor.id)
    patient = session.get(User, appointment.patient_id)

    prescription = Prescription(
        appointment_id=appointment.id,
        medicine_name=medicine_name.strip(),
        duration_days=duration_days,
        **{time_of_day: frequency.get(time_of_day, 0) for time_of_day in DOSE_TIMES}
    )
    session.add(prescription)

    summary = f"{prescription.medicine_name} ({describe_frequency(prescription)})"
    payload = jsonable_encoder({
        "appointment_id": appointment.id,
        "prescription_id": prescription.id,
        "medicine_name": prescription.medicine_name,
    })
    notifications = [
        queue_notification(
            session,
            user_id=appointment.patient_id,
            message=f"Dr. {doctor.name} prescribed {summary} for your appointment",
            notification_type=NotificationType.PRESCRIPTION_ADDED,
            event=EventType.PRESCRIPTION_ADDED,
            appointment_id=appointment.id,
            payload=payload,
        ),
        queue_notification(
            session,
            user_id=doctor.id,
            message=f"You prescribed {summary} for {patient.name if patient else 'the patient'}",
            notification_type=NotificationType.PRESCRIPTION_ADDED,
            event=EventType.PRESCRIPTION_ADDED,
            appointment_id=appointment.id,
            payload=payload,
        ),
    ]
    session.commit()
    session.refresh(prescription)
    logger.info(f"Prescription {prescription.id} added to appointment {appointment.id}")

    await dispatch_after_commit(session, notifications)
    return prescription


async def submit_review(session: Session, patient: User, appointment_id: str, rating: int, comment: str) -> Review:
    """One review per appointment and reviewer, after the visit took place"""
    validate_id(appointment_id, "appointment ID")
    appointment = session.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")

    if appointment.patient_id != patient.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only review your own appointments"
        )

    if appointment.status not in REVIEWABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You can only review attended or completed appointments"
        )

    review = Review(
        appointment_id=appointment.id,
        reviewer_id=patient.id,
        reviewee_id=appointment.doctor_id,
        rating=rating,
        comment=comment.strip(),
    )
    session.add(review)
    notification = queue_notification(
        session,
        user_id=appointment.doctor_id,
        message=f"{patient.name} left a {rating}-star review for the appointment on {appointment.date.isoformat()}",
        notification_type=NotificationType.REVIEW_ADDED,
        event=EventType.REVIEW_ADDED,
        appointment_id=appointment.id,
        payload={"appointment_id": appointment.id, "review_id": review.id, "rating": rating},
    )

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already reviewed this appointment"
        )

    session.refresh(review)
    logger.info(f"Review {review.id} submitted for appointment {appointment.id}")

    await dispatch_after_commit(session, [notification])
    return review


def review_stats(session: Session, doctor_id: str) -> Dict[str, Any]:
    ratings = session.exec(select(Review.rating).where(Review.reviewee_id == doctor_id)).all()
    distribution = {rating: 0 for rating in range(1, 6)}
    for rating in ratings:
        distribution[rating] = distribution.get(rating, 0) + 1

    total = len(ratings)
    return {
        "average_rating": round(sum(ratings) / total, 1) if total else 0,
        "total_reviews": total,
        "rating_distribution": distribution,
    }
