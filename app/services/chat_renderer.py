"""
Chat Renderer - Turn normalized responses into chat messages.

The renderer only ever looks at NormalizedResponse; raw API0 or backend
payloads never reach it.

Per response type:
- text:   "✅ <message>"
- file:   "✅ <message>", plus a download affordance (show_execution_result)
- data:   "✅ <message>"; job-fit payloads get a structured summary
- action: "✅ <message>" and a "Next steps:" list
- error:  "❌ <error>" and a "Suggestions:" list
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.standard_response import (
    ActionResponse,
    DataResponse,
    ErrorResponse,
    FileResponse,
    NormalizedResponse,
    TextResponse,
)
from app.services.cv_command_service import CommandResult, GENERIC_FAILURE
from app.services.response_adapter import is_job_analysis


SUCCESS_PREFIX = "✅ "
ERROR_PREFIX = "❌ "
NEXT_STEPS_HEADER = "Next steps:"
SUGGESTIONS_HEADER = "Suggestions:"
MAX_TALKING_POINTS = 5

_NUMBERED_LINE = re.compile(r"^\d+\.")

# Checked in order; first hit wins
_FIT_SCORES = [
    ("excellent", ("excellent", "perfect")),
    ("good", ("good", "well")),
    ("fair", ("fair", "moderate")),
    ("poor", ("poor", "weak")),
]


class ChatMessage(BaseModel):
    """One assistant message as shown in the chat."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant", "system"] = "assistant"
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    response: Optional[NormalizedResponse] = None
    show_execution_result: bool = False


def _bullets(header: str, items: Optional[List[str]]) -> str:
    if not items:
        return ""
    return f"\n\n{header}\n" + "\n".join(f"• {item}" for item in items)


# ---------------------------------------------------------------------------
# JOB FIT SUMMARY
# ---------------------------------------------------------------------------

def extract_fit_score(analysis: str) -> str:
    """Coarse fit verdict from free-text analysis ("unknown" if none)."""
    lowered = (analysis or "").lower()
    for score, keywords in _FIT_SCORES:
        if any(word in lowered for word in keywords):
            return score
    return "unknown"


def extract_talking_points(analysis: str) -> List[str]:
    """Numbered or bulleted lines of the analysis, at most five."""
    points = []
    for line in (analysis or "").split("\n"):
        stripped = line.strip()
        if _NUMBERED_LINE.match(stripped) or "•" in stripped or "-" in stripped:
            points.append(stripped)
    return points[:MAX_TALKING_POINTS]


def format_job_fit(data: Dict[str, Any]) -> str:
    job = data.get("job_content") or {}
    analysis = str(data.get("fit_analysis") or "")

    lines = [
        f"Job Position: {job.get('title') or 'N/A'} at {job.get('company') or 'N/A'}",
        f"Fit: {extract_fit_score(analysis)}",
    ]
    points = extract_talking_points(analysis)
    if points:
        lines.append("")
        lines.extend(points)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# RENDERING
# ---------------------------------------------------------------------------

def render_response(response: NormalizedResponse) -> ChatMessage:
    """Build the chat message for one normalized response."""
    if isinstance(response, TextResponse):
        return ChatMessage(content=SUCCESS_PREFIX + response.message, response=response)

    if isinstance(response, FileResponse):
        return ChatMessage(
            content=SUCCESS_PREFIX + response.message,
            response=response,
            show_execution_result=True,
        )

    if isinstance(response, DataResponse):
        content = SUCCESS_PREFIX + response.message
        if is_job_analysis(response.payload):
            content += "\n\n" + format_job_fit(response.payload)
        return ChatMessage(content=content, response=response, show_execution_result=True)

    if isinstance(response, ActionResponse):
        return ChatMessage(
            content=SUCCESS_PREFIX + response.message + _bullets(NEXT_STEPS_HEADER, response.next_actions),
            response=response,
        )

    if isinstance(response, ErrorResponse):
        return ChatMessage(
            content=ERROR_PREFIX + response.error + _bullets(SUGGESTIONS_HEADER, response.suggestions),
            response=response,
        )

    raise TypeError(f"Not a normalized response: {type(response).__name__}")


def render_command_result(result: CommandResult) -> ChatMessage:
    """Chat message for a finished command, failed or not."""
    if result.success and result.data is not None:
        return render_response(result.data)
    return ChatMessage(content=ERROR_PREFIX + (result.error or GENERIC_FAILURE))
