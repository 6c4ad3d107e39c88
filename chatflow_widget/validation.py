"""
Input sanitization and upload checks.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

MAX_MESSAGE_LENGTH = 5000
MAX_METADATA_KEY_LENGTH = 100
MAX_METADATA_STRING_LENGTH = 1000
MAX_METADATA_LIST_ITEMS = 50

MAX_FILE_SIZE = 10 * 1024 * 1024

ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

_ANGLE_BRACKETS = re.compile(r"[<>]")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_input(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    return _ANGLE_BRACKETS.sub("", (text or "").strip())[:max_length]


def sanitize_metadata(metadata: Any) -> Dict[str, Any]:
    """
    Keep only scalar values and short lists under short keys.
    Nested objects are dropped.
    """
    if not isinstance(metadata, dict):
        return {}

    sanitized: Dict[str, Any] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or len(key) > MAX_METADATA_KEY_LENGTH:
            continue
        if isinstance(value, str):
            sanitized[key] = value[:MAX_METADATA_STRING_LENGTH]
        elif isinstance(value, (bool, int, float)):
            sanitized[key] = value
        elif isinstance(value, list):
            sanitized[key] = value[:MAX_METADATA_LIST_ITEMS]
    return sanitized


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename or "")


@dataclass
class UploadCheck:
    valid: bool
    error: Optional[str] = None


def validate_file_upload(filename: Optional[str], mimetype: Optional[str], size: Optional[int]) -> UploadCheck:
    if filename is None:
        return UploadCheck(False, "No file provided")

    if mimetype not in ALLOWED_MIME_TYPES:
        return UploadCheck(
            False,
            f"File type {mimetype} not allowed. Allowed types: {', '.join(ALLOWED_MIME_TYPES)}",
        )

    if size is None or size > MAX_FILE_SIZE:
        return UploadCheck(
            False,
            f"File size exceeds maximum allowed size of {MAX_FILE_SIZE // 1024 // 1024}MB",
        )

    if not sanitize_filename(filename):
        return UploadCheck(False, "Invalid filename")

    return UploadCheck(True)
