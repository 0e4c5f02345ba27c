"""
Attachments - Turn uploaded files into command attachments.

Files are read fully into memory and base64 encoded before a command is
submitted; nothing is streamed and nothing is persisted.

Limits (checked on the raw size):
- Images: IMAGE_MAX_BYTES (5MB by default)
- Other files: FILE_MAX_BYTES (10MB by default)
"""

import base64
import logging
import uuid
from typing import Iterable, List, Sequence, Tuple

from app.core.config import settings
from app.environments.api0 import FileAttachment
from app.environments.base import AttachmentError

logger = logging.getLogger("cvenom.services.attachments")


SUPPORTED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/json",
}

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


def is_image_type(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def is_supported_type(mime_type: str) -> bool:
    return mime_type in SUPPORTED_MIME_TYPES or is_image_type(mime_type)


def max_size_for(mime_type: str) -> int:
    return settings.IMAGE_MAX_BYTES if is_image_type(mime_type) else settings.FILE_MAX_BYTES


def format_file_size(size_bytes: int) -> str:
    """
    Human readable size, two decimals at most.

    Examples:
        0 -> "0 Bytes", 1536 -> "1.5 KB", 5242880 -> "5 MB"
    """
    if size_bytes <= 0:
        return "0 Bytes"
    i = 0
    while size_bytes >= 1024 ** (i + 1) and i < len(_SIZE_UNITS) - 1:
        i += 1
    value = round(size_bytes / (1024 ** i), 2)
    return f"{value:g} {_SIZE_UNITS[i]}"


def build_attachment(name: str, mime_type: str, content: bytes) -> FileAttachment:
    """
    Validate and encode one file.

    Args:
        name: Original filename
        mime_type: Declared content type
        content: Raw file bytes

    Returns:
        FileAttachment with base64 data (and a data URL preview for images)

    Raises:
        AttachmentError: Unsupported type or file too large
    """
    if not is_supported_type(mime_type):
        raise AttachmentError(f"File type not supported: {name}")

    if len(content) > max_size_for(mime_type):
        raise AttachmentError(f"File too large: {name} ({format_file_size(len(content))})")

    data = base64.b64encode(content).decode("ascii")
    preview = f"data:{mime_type};base64,{data}" if is_image_type(mime_type) else None

    return FileAttachment(
        id=uuid.uuid4().hex,
        name=name,
        mime_type=mime_type,
        size_bytes=len(content),
        data=data,
        preview=preview,
    )


def process_uploads(
    files: Iterable[Tuple[str, str, bytes]],
) -> Tuple[List[FileAttachment], List[str]]:
    """
    Build attachments for a batch of files.

    A bad file never fails the batch; its error is collected instead.

    Args:
        files: (name, mime_type, content) per file

    Returns:
        (attachments, errors)
    """
    attachments: List[FileAttachment] = []
    errors: List[str] = []

    for name, mime_type, content in files:
        try:
            attachments.append(build_attachment(name, mime_type, content))
        except AttachmentError as e:
            logger.info(f"Rejected attachment: {e}")
            errors.append(str(e))

    return attachments, errors


def enhance_sentence_with_attachments(
    sentence: str,
    attachments: Sequence[FileAttachment],
) -> str:
    """
    Mention attachments in the sentence so API0 can pick an upload endpoint.

    "Upload picture for john-doe" + 1 image
        -> "Upload picture for john-doe with 1 image attachment"
    """
    images = sum(1 for a in attachments if a.is_image)
    others = len(attachments) - images

    enhanced = sentence
    if images:
        enhanced += f" with {images} image attachment{'s' if images > 1 else ''}"
    if others:
        enhanced += f" with {others} file attachment{'s' if others > 1 else ''}"
    return enhanced
