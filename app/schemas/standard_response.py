"""
Standard Response Schemas - the single output contract of the command pipeline.

Every command ends in exactly one of five shapes:
1. TextResponse - a plain answer or a prompt for missing information
2. FileResponse - a generated document ready for download
3. DataResponse - structured data (e.g. a job-fit analysis)
4. ActionResponse - an action resolved or confirmed
5. ErrorResponse - a user-facing failure with optional suggestions

UI surfaces render only these models; they never look at raw intent
service or backend payloads.

Usage:
======
```python
from app.schemas.standard_response import TextResponse, NormalizedResponse

response: NormalizedResponse = TextResponse(message="Which language?")
response.model_dump(mode="json")
# {"type": "text", "success": True, "message": "Which language?", ...}
```
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ResponseType(str, Enum):
    """Discriminator values of NormalizedResponse."""
    TEXT = "text"
    FILE = "file"
    DATA = "data"
    ACTION = "action"
    ERROR = "error"


class _BaseResponse(BaseModel):
    # File payloads travel as base64 in JSON
    model_config = ConfigDict(ser_json_bytes="base64")

    conversation_id: Optional[str] = Field(
        default=None,
        description="Echo of the conversation id so the caller can continue the session",
    )


# ---------------------------------------------------------------------------
# SUCCESS VARIANTS
# ---------------------------------------------------------------------------

class TextResponse(_BaseResponse):
    """Plain message (answers, help, prompts for missing parameters)."""
    type: Literal[ResponseType.TEXT] = ResponseType.TEXT
    success: Literal[True] = True
    message: str


class FileResponse(_BaseResponse):
    """A file produced by an executed endpoint (currently always PDF)."""
    type: Literal[ResponseType.FILE] = ResponseType.FILE
    success: Literal[True] = True
    message: str
    file_type: str = "pdf"
    filename: str = "document.pdf"
    payload: Optional[bytes] = Field(default=None, description="File content")


class DataResponse(_BaseResponse):
    """Structured data returned by an executed endpoint."""
    type: Literal[ResponseType.DATA] = ResponseType.DATA
    success: Literal[True] = True
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ActionResponse(_BaseResponse):
    """An action resolved (not yet executed) or confirmed by the backend."""
    type: Literal[ResponseType.ACTION] = ResponseType.ACTION
    success: Literal[True] = True
    message: str
    action: str
    next_actions: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# ERROR VARIANT
# ---------------------------------------------------------------------------

class ErrorResponse(_BaseResponse):
    """User-facing failure. Never carries a success message."""
    type: Literal[ResponseType.ERROR] = ResponseType.ERROR
    success: Literal[False] = False
    error: str
    error_code: Optional[str] = None
    suggestions: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# UNION TYPE
# ---------------------------------------------------------------------------

NormalizedResponse = Annotated[
    Union[TextResponse, FileResponse, DataResponse, ActionResponse, ErrorResponse],
    Field(discriminator="type"),
]
