from typing import Optional, List, Dict
from pydantic import BaseModel, EmailStr, Field
from models import UserRole, Gender, BloodGroup
from datetime import datetime, date

# Request schemas
class UserRegister(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    role: UserRole
    specialization: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

# Response schemas
class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    specialization: Optional[str] = None
    profile_picture: Optional[str] = None
    availability_days: List[str] = []
    availability_start: str = ""
    availability_end: str = ""
    slot_duration: int = 30
    created_at: datetime

    class Config:
        from_attributes = True

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

# Profile schemas
class DoctorProfileUpdate(BaseModel):
    name: Optional[str] = None
    specialization: Optional[str] = None
    profile_picture: Optional[str] = None
    availability_days: Optional[List[str]] = None
    availability_start: Optional[str] = None  # Format: "HH:MM"
    availability_end: Optional[str] = None    # Format: "HH:MM"
    slot_duration: Optional[int] = None

class PatientProfileUpdate(BaseModel):
    name: Optional[str] = None
    profile_picture: Optional[str] = None

class TimeSlot(BaseModel):
    start: str
    end: str

class AvailableSlotsResponse(BaseModel):
    doctor_id: str
    date: date
    slot_duration: int
    slots: List[TimeSlot]

# Appointment schemas
class AppointmentRequestCreate(BaseModel):
    doctor_id: Optional[str] = None
    date: str   # Format: "YYYY-MM-DD"
    time: str   # Format: "HH:MM"
    reason: str = Field(min_length=1)

class AppointmentDecision(BaseModel):
    request_id: Optional[str] = None

class AppointmentStatusUpdate(BaseModel):
    status: str

class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    date: date
    time: str
    reason: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

# Prescription schemas
class PrescriptionFrequency(BaseModel):
    morning: int = Field(default=0, ge=0, le=10)
    afternoon: int = Field(default=0, ge=0, le=10)
    evening: int = Field(default=0, ge=0, le=10)
    night: int = Field(default=0, ge=0, le=10)

class PrescriptionCreate(BaseModel):
    medicine_name: str = Field(min_length=1)
    frequency: PrescriptionFrequency
    duration_days: int = Field(ge=1)

class PrescriptionResponse(BaseModel):
    id: str
    appointment_id: str
    medicine_name: str
    morning: int
    afternoon: int
    evening: int
    night: int
    duration_days: int
    prescribed_at: datetime

    class Config:
        from_attributes = True

# Review schemas
class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1, max_length=1000)

class ReviewResponse(BaseModel):
    id: str
    appointment_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str
    created_at: datetime

    class Config:
        from_attributes = True

class ReviewStats(BaseModel):
    average_rating: float
    total_reviews: int
    rating_distribution: Dict[int, int]

class AppointmentDetailResponse(AppointmentResponse):
    patient: Optional[UserResponse] = None
    doctor: Optional[UserResponse] = None
    prescriptions: List[PrescriptionResponse] = []
    reviews: List[ReviewResponse] = []

# Chat schemas
class ChatGroupCreate(BaseModel):
    recipient_id: Optional[str] = None

class ChatGroupResolveResponse(BaseModel):
    chat_group_id: str
    created: bool

# Notification schemas
class NotificationResponse(BaseModel):
    id: str
    user_id: str
    message: str
    type: str
    appointment_id: Optional[str] = None
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True

class MarkAllReadResponse(BaseModel):
    message: str
    modified_count: int

# Patient record schemas
class PatientRecordCreate(BaseModel):
    gender: Gender
    blood_group: BloodGroup
    height: float = Field(ge=0, le=300)
    weight: float = Field(ge=0, le=500)
    allergies: str = ""
    current_medications: str = ""
    chronic_conditions: str = ""
    previous_surgeries: str = ""
    family_history: str = ""

class PatientRecordResponse(BaseModel):
    id: str
    patient_id: str
    gender: Gender
    blood_group: str
    height: float
    weight: float
    allergies: str
    current_medications: str
    chronic_conditions: str
    previous_surgeries: str
    family_history: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
