from typing import Optional, List
from datetime import datetime, date as date_type
from sqlmodel import Field, SQLModel
from sqlalchemy import Column, String, JSON, Index, UniqueConstraint, text
from enum import Enum
import uuid


def new_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    ABSENT = "absent"
    REJECTED = "rejected"
    COMPLETED = "completed"


class NotificationType(str, Enum):
    APPOINTMENT_REQUEST = "appointment_request"
    APPOINTMENT_REQUEST_SENT = "appointment_request_sent"
    APPOINTMENT_ACCEPTED = "appointment_accepted"
    APPOINTMENT_REJECTED = "appointment_rejected"
    APPOINTMENT_STATUS_UPDATED = "appointment_status_updated"
    PRESCRIPTION_ADDED = "prescription_added"
    REVIEW_ADDED = "review_added"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class BloodGroup(str, Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"


class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    name: str
    email: str = Field(unique=True, index=True)
    password_hash: str
    role: UserRole
    specialization: Optional[str] = None
    profile_picture: Optional[str] = None

    # Doctor availability
    availability_days: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    availability_start: str = Field(default="")  # Format: "HH:MM"
    availability_end: str = Field(default="")    # Format: "HH:MM"
    slot_duration: int = Field(default=30)       # Duration in minutes

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Appointment(SQLModel, table=True):
    __table_args__ = (
        # At most one accepted booking per doctor slot
        Index(
            "uq_appointment_accepted_slot",
            "doctor_id", "date", "time",
            unique=True,
            sqlite_where=text("status = 'accepted'"),
            postgresql_where=text("status = 'accepted'"),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    patient_id: str = Field(foreign_key="user.id", index=True)
    doctor_id: str = Field(foreign_key="user.id", index=True)
    date: date_type
    time: str  # Format: "HH:MM"
    reason: str
    status: str = Field(default=AppointmentStatus.PENDING.value, sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Prescription(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    appointment_id: str = Field(foreign_key="appointment.id", index=True)
    medicine_name: str
    morning: int = Field(default=0, ge=0, le=10)
    afternoon: int = Field(default=0, ge=0, le=10)
    evening: int = Field(default=0, ge=0, le=10)
    night: int = Field(default=0, ge=0, le=10)
    duration_days: int
    prescribed_at: datetime = Field(default_factory=datetime.utcnow)


class ChatGroup(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    participant_a: str = Field(foreign_key="user.id", index=True)
    participant_b: str = Field(foreign_key="user.id", index=True)
    # "<a>:<b>" with a <= b; one group per unordered pair
    participant_key: str = Field(unique=True, index=True)
    last_message: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def participants(self) -> List[str]:
        return [self.participant_a, self.participant_b]


class Message(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    sender_id: str = Field(foreign_key="user.id", index=True)
    recipient_id: str = Field(foreign_key="user.id", index=True)
    chat_group_id: str = Field(foreign_key="chatgroup.id", index=True)
    content: str = Field(default="")
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    attachment_name: Optional[str] = None
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class Notification(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    user_id: str = Field(foreign_key="user.id", index=True)
    message: str
    type: str = Field(sa_column=Column(String(40), nullable=False))
    appointment_id: Optional[str] = Field(default=None, foreign_key="appointment.id")
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    # Outbox bookkeeping for the live event
    event: Optional[str] = None
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    dispatched_at: Optional[datetime] = Field(default=None, index=True)
    attempts: int = Field(default=0)
    last_error: Optional[str] = None


class Review(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("appointment_id", "reviewer_id", name="uq_review_appointment_reviewer"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    appointment_id: str = Field(foreign_key="appointment.id", index=True)
    reviewer_id: str = Field(foreign_key="user.id", index=True)
    reviewee_id: str = Field(foreign_key="user.id", index=True)
    rating: int = Field(ge=1, le=5)
    comment: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PatientRecord(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    patient_id: str = Field(foreign_key="user.id", unique=True)
    gender: Gender
    blood_group: str = Field(sa_column=Column(String(3), nullable=False))
    height: float = Field(ge=0, le=300)
    weight: float = Field(ge=0, le=500)
    allergies: str = Field(default="")
    current_medications: str = Field(default="")
    chronic_conditions: str = Field(default="")
    previous_surgeries: str = Field(default="")
    family_history: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
