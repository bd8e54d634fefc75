"""Date and time validation utilities"""
import re
from datetime import datetime, date, time
from fastapi import HTTPException, status

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def is_valid_time(time_str: str) -> bool:
    return bool(time_str) and TIME_PATTERN.match(time_str) is not None


def validate_time_format(time_str: str) -> bool:
    """Validate time string is in HH:MM format"""
    if not is_valid_time(time_str):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid time format. Use HH:mm"
        )
    return True


def parse_time_string(time_str: str) -> time:
    """Parse time string to time object"""
    validate_time_format(time_str)
    return datetime.strptime(time_str, "%H:%M").time()


def parse_date_string(date_str: str) -> date:
    """Parse a strict YYYY-MM-DD date"""
    try:
        if not date_str or not DATE_PATTERN.match(date_str):
            raise ValueError(date_str)
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date format. Use YYYY-MM-DD"
        )


def validate_time_range(start_time_str: str, end_time_str: str) -> bool:
    """Validate that end time is after start time"""
    start = parse_time_string(start_time_str)
    end = parse_time_string(end_time_str)

    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"End time ({end_time_str}) must be after start time ({start_time_str})"
        )
    return True


def minutes_since_midnight(time_str: str) -> int:
    parsed = parse_time_string(time_str)
    return parsed.hour * 60 + parsed.minute


def format_minutes(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"
