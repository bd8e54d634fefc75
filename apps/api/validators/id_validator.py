"""Identifier shape checks"""
import re
from typing import Optional
from fastapi import HTTPException, status

ID_PATTERN = re.compile(r'^[0-9a-f]{32}$')


def is_valid_id(value: Optional[str]) -> bool:
    return isinstance(value, str) and ID_PATTERN.match(value) is not None


def validate_id(value: Optional[str], label: str) -> str:
    """Raise 400 '<label> is required' / 'Invalid <label>' for missing or malformed ids"""
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label[0].upper()}{label[1:]} is required"
        )
    if not is_valid_id(value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {label}"
        )
    return value
