"""Upload storage on the local filesystem (chat attachments, profile pictures), served under /uploads"""
import os
import re
import time
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, UploadFile, status

from config import get_settings
from validators.business_rules import get_business_rules

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads"
UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


@dataclass
class Attachment:
    """An attachment that passed the upload policy but is not yet on disk"""
    filename: str
    content_type: str
    content: bytes


def upload_dir() -> str:
    path = get_settings().upload_dir
    os.makedirs(path, exist_ok=True)
    return path


async def read_attachment(file: Optional[UploadFile]) -> Optional[Attachment]:
    """Read an uploaded file and apply the type and size policy"""
    if file is None or not file.filename:
        return None

    rules = get_business_rules()
    if file.content_type not in rules.ALLOWED_ATTACHMENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Only JPEG, PNG, PDF, and Word documents are allowed"
        )

    content = await file.read()
    if len(content) > rules.MAX_ATTACHMENT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File size must be less than 5MB"
        )

    return Attachment(filename=file.filename, content_type=file.content_type, content=content)


def stored_name(original: str) -> str:
    base = UNSAFE_CHARS.sub("_", os.path.basename(original)) or "file"
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}-{base}"


def save_attachment(attachment: Attachment) -> str:
    """Write the upload and return its public URL"""
    filename = stored_name(attachment.filename)
    filepath = os.path.join(upload_dir(), filename)
    with open(filepath, "wb") as f:
        f.write(attachment.content)

    logger.info(f"Stored upload {filename} ({len(attachment.content)} bytes)")
    return f"{UPLOAD_URL_PREFIX}/{filename}"


async def read_profile_picture(file: UploadFile) -> Attachment:
    """Read a profile picture upload; images only, same size limit as attachments"""
    rules = get_business_rules()
    if file.content_type not in rules.ALLOWED_PROFILE_PICTURE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only JPEG, PNG, and WebP images are allowed"
        )

    content = await file.read()
    if len(content) > rules.MAX_ATTACHMENT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File size must be less than 5MB"
        )

    return Attachment(filename=file.filename or "profile", content_type=file.content_type, content=content)
