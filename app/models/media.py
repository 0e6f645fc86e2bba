"""
Typed states of a chunked media upload.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ProcessingState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


class ProcessingInfo(BaseModel):
    state: ProcessingState
    check_after_secs: Optional[int] = None
    progress_percent: Optional[int] = None
    error: Optional[Dict[str, Any]] = None


class MediaDescriptor(BaseModel):
    """What INIT is told about the file."""

    media_type: str
    media_category: str
    total_bytes: int


class UploadSession(BaseModel):
    """Result of INIT. The id is single-use and dies after ``expires_after_secs``."""

    media_id: str
    media_key: Optional[str] = None
    expires_after_secs: Optional[int] = None


class FinalizedMedia(BaseModel):
    media_id: str
    media_key: Optional[str] = None
    size: Optional[int] = None
    processing_info: Optional[ProcessingInfo] = None


__all__ = [
    "FinalizedMedia",
    "MediaDescriptor",
    "ProcessingInfo",
    "ProcessingState",
    "UploadSession",
]
