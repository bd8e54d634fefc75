"""Business rule configuration"""
from typing import List
from pydantic import BaseModel, Field


class BusinessRules(BaseModel):
    """Business rules configuration"""
    # Scheduling rules
    DEFAULT_SLOT_DURATION_MINUTES: int = 30
    ALLOWED_SLOT_DURATIONS: List[int] = Field(default_factory=lambda: [30, 45, 60, 75, 90, 105, 120])

    # Fetch limits (most recent first / oldest first)
    NOTIFICATION_FETCH_LIMIT: int = 50
    MESSAGE_FETCH_LIMIT: int = 100

    # Chat attachment rules
    MAX_ATTACHMENT_BYTES: int = 5 * 1024 * 1024
    ALLOWED_ATTACHMENT_TYPES: List[str] = Field(default_factory=lambda: [
        "image/jpeg",
        "image/png",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ])
    ALLOWED_PROFILE_PICTURE_TYPES: List[str] = Field(default_factory=lambda: [
        "image/jpeg",
        "image/png",
        "image/webp",
    ])

    # Appointment history filter windows, in days
    HISTORY_WINDOWS: dict = Field(default_factory=lambda: {
        "3days": 3,
        "week": 7,
        "15days": 15,
        "month": 30,
    })


# Global instance
business_rules = BusinessRules()


def get_business_rules() -> BusinessRules:
    """Get current business rules"""
    return business_rules

