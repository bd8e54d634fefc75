"""Appointment validation logic"""
from datetime import date
from typing import List, Dict
from fastapi import HTTPException, status
from sqlmodel import Session, select
from models import Appointment, AppointmentStatus, User
from validators.time_validator import (
    is_valid_time,
    minutes_since_midnight,
    format_minutes,
)
from validators.business_rules import get_business_rules

# Statuses a doctor may set once an appointment has been accepted
FINAL_STATUSES = [
    AppointmentStatus.ATTENDED.value,
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.ABSENT.value,
]

# Statuses after which the patient may leave a review
REVIEWABLE_STATUSES = [
    AppointmentStatus.ATTENDED.value,
    AppointmentStatus.COMPLETED.value,
]


def slot_length(doctor: User) -> int:
    rules = get_business_rules()
    if doctor.slot_duration in rules.ALLOWED_SLOT_DURATIONS:
        return doctor.slot_duration
    return rules.DEFAULT_SLOT_DURATION_MINUTES


def validate_doctor_works_on(doctor: User, appointment_date: date) -> None:
    """Validate the doctor works on the weekday of the requested date"""
    day_of_week = appointment_date.strftime("%A")
    if day_of_week not in (doctor.availability_days or []):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Doctor not available on {day_of_week}"
        )


def validate_availability_window(doctor: User) -> None:
    if not is_valid_time(doctor.availability_start) or not is_valid_time(doctor.availability_end):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid time format in doctor availability"
        )


def validate_doctor_availability(doctor: User, appointment_date: date, time_str: str) -> None:
    """Validate the requested slot lies fully inside the doctor's working window"""
    validate_doctor_works_on(doctor, appointment_date)
    validate_availability_window(doctor)

    start = minutes_since_midnight(doctor.availability_start)
    end = minutes_since_midnight(doctor.availability_end)
    requested = minutes_since_midnight(time_str)

    if requested < start or requested + slot_length(doctor) > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Requested time is outside doctor's availability"
        )


def get_booked_times(session: Session, doctor_id: str, appointment_date: date) -> List[str]:
    """Times already taken by an accepted appointment"""
    return list(session.exec(
        select(Appointment.time).where(
            Appointment.doctor_id == doctor_id,
            Appointment.date == appointment_date,
            Appointment.status == AppointmentStatus.ACCEPTED.value
        )
    ).all())


def validate_slot_not_booked(session: Session, doctor_id: str, appointment_date: date, time_str: str) -> None:
    if time_str in get_booked_times(session, doctor_id, appointment_date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This time slot is already booked"
        )


def generate_available_slots(session: Session, doctor: User, appointment_date: date) -> List[Dict[str, str]]:
    """Slots of the doctor's slot length inside the window, minus accepted bookings"""
    validate_doctor_works_on(doctor, appointment_date)
    validate_availability_window(doctor)

    length = slot_length(doctor)
    start = minutes_since_midnight(doctor.availability_start)
    end = minutes_since_midnight(doctor.availability_end)
    booked = set(get_booked_times(session, doctor.id, appointment_date))

    slots = []
    current = start
    while current + length <= end:
        slot_start = format_minutes(current)
        if slot_start not in booked:
            slots.append({"start": slot_start, "end": format_minutes(current + length)})
        current += length
    return slots


def validate_final_status(new_status: str) -> None:
    if new_status not in FINAL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid status. Use attended, cancelled, or absent"
        )


WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def validate_weekdays(days: List[str]) -> List[str]:
    invalid = [day for day in days if day not in WEEKDAYS]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid availability day(s): {', '.join(invalid)}"
        )
    # Keep calendar order, drop duplicates
    return [day for day in WEEKDAYS if day in days]


def validate_slot_duration(duration: int) -> None:
    allowed = get_business_rules().ALLOWED_SLOT_DURATIONS
    if duration not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Slot duration must be one of {', '.join(str(d) for d in allowed)} minutes"
        )
