"""Helpers shared by the processing services."""
import asyncio
from typing import Any, Awaitable, List

from dualscan.constants import ALLOWED_IMAGE_TYPES, MAX_UPLOAD_BYTES
from dualscan.exceptions import ValidationError
from dualscan.models import ImageUpload


async def gather_all(*calls: Awaitable[Any]) -> List[Any]:
    """
    Run calls concurrently and wait for every one of them to settle.
    
    Unlike a plain ``asyncio.gather`` the siblings of a failing call are not
    left running in the background.
    
    Raises:
        The first exception raised by any call, in argument order
    """
    outcomes = await asyncio.gather(*calls, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return list(outcomes)


def validate_image(upload: ImageUpload) -> None:
    """
    Check an uploaded image before any backend is called.
    
    Raises:
        ValidationError: If the image is empty, too large or of an unsupported type
    """
    if upload.mime_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            f"Only {', '.join(sorted(ALLOWED_IMAGE_TYPES))} images are supported. "
            f"Received {upload.mime_type} for {upload.filename}"
        )
    if not upload.content:
        raise ValidationError(f"{upload.filename} is empty")
    if upload.size > MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"{upload.filename} exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit"
        )
