"""
Response Adapter - Map raw API0 results onto the standard response shapes.

Two pure functions, no network and no mutation:
- adapt_analysis(): analyze candidates -> NormalizedResponse
- adapt_execution(): executed endpoint result -> NormalizedResponse

Neither function raises. Anything unexpected degrades to a generic
TextResponse so a command never ends without a renderable answer.

Execution precedence:
=====================
A single raw result may match several shapes (e.g. `data` and `message`).
classify_execution() checks them in this fixed order:

    failure -> conversation -> file -> data -> action -> text -> fallback
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from app.environments.api0.schemas import (
    AnalysisCandidate,
    ExecutionKind,
    ExecutionResult,
    IntentKind,
)
from app.schemas.standard_response import (
    ActionResponse,
    DataResponse,
    ErrorResponse,
    FileResponse,
    NormalizedResponse,
    TextResponse,
)


logger = logging.getLogger("cvenom.services.response_adapter")


# ---------------------------------------------------------------------------
# MESSAGES
# ---------------------------------------------------------------------------
NO_RESULTS_ERROR = "No analysis results found"
REPHRASE_SUGGESTIONS = [
    "Try being more specific about what you want to do",
    'Name the profile you mean, e.g. "Generate CV for john-doe"',
    'Ask "What can you do?" to see the available commands',
]

CAPABILITIES_MESSAGE = "I can help you with CV-related questions and commands."
HELP_HEADER = "ℹ️ **Help & Capabilities**"
HELP_FALLBACK = (
    "ℹ️ I can help you with CV creation, file editing, generating PDFs, and more. "
    'Try asking "What can you do?" for a complete list.'
)
QUESTION_FALLBACK = "Here's the information you requested."
CONVERSATION_FALLBACK = "Conversation response"

DOCUMENT_READY = "Document ready for download"
ANALYSIS_COMPLETE = "Analysis complete"
DATA_RETRIEVED = "Data retrieved"
OPERATION_COMPLETE = "Operation complete"
OPERATION_FAILED = "Operation failed"
RESPONSE_RECEIVED = "Response received"


# ---------------------------------------------------------------------------
# ANALYSIS
# ---------------------------------------------------------------------------

def _payload_message(raw_payload: str) -> Optional[str]:
    """
    Extract `response` or `content` from a candidate's JSON payload.

    Returns:
        The message, "" when the JSON has neither field, None when unparseable
    """
    try:
        payload = json.loads(raw_payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("response") or payload.get("content") or ""


def adapt_analysis(candidates: Sequence[AnalysisCandidate]) -> NormalizedResponse:
    """
    Convert analyze results into a standard response.

    Only the first (best) candidate is considered.

    Returns:
        TextResponse for questions, help and conversation endpoints,
        ActionResponse for a resolved action that still needs executing,
        ErrorResponse when nothing matched
    """
    if not candidates:
        return ErrorResponse(error=NO_RESULTS_ERROR, suggestions=list(REPHRASE_SUGGESTIONS))

    best = candidates[0]
    conversation_id = best.conversation_id

    if best.intent == IntentKind.GENERAL_QUESTION:
        message = _payload_message(best.raw_payload)
        if message is None:
            logger.warning("Failed to parse general question payload")
            return TextResponse(message=CAPABILITIES_MESSAGE, conversation_id=conversation_id)
        return TextResponse(message=message or QUESTION_FALLBACK, conversation_id=conversation_id)

    if best.intent == IntentKind.HELP:
        message = _payload_message(best.raw_payload)
        if message is None:
            logger.warning("Failed to parse help payload")
            return TextResponse(message=HELP_FALLBACK, conversation_id=conversation_id)
        help_body = message or "Here are the available capabilities:"
        return TextResponse(message=f"{HELP_HEADER}\n\n{help_body}", conversation_id=conversation_id)

    # ACTIONABLE
    if best.endpoint.is_conversation_group:
        message = _payload_message(best.raw_payload)
        if message is None:
            logger.warning("Failed to parse conversation payload")
            return TextResponse(message=CAPABILITIES_MESSAGE, conversation_id=conversation_id)
        return TextResponse(message=message or CONVERSATION_FALLBACK, conversation_id=conversation_id)

    name = best.endpoint.endpoint_name or best.endpoint.endpoint_id or "action"
    return ActionResponse(
        message=f"Ready to execute: {name}",
        action=name,
        next_actions=[f"Execute {name}", "Provide parameters if needed"],
        conversation_id=conversation_id,
    )


# ---------------------------------------------------------------------------
# EXECUTION
# ---------------------------------------------------------------------------

class ExecutionShape(str, Enum):
    """What a raw execution result is taken to be, in precedence order."""
    FAILURE = "failure"
    CONVERSATION = "conversation"
    FILE = "file"
    DATA = "data"
    ACTION = "action"
    TEXT = "text"
    FALLBACK = "fallback"


def classify_execution(result: ExecutionResult) -> ExecutionShape:
    """Pick the one shape a raw result maps to. Order matters."""
    if result.is_failure:
        return ExecutionShape.FAILURE
    if result.kind == ExecutionKind.CONVERSATION or (
        result.content and result.blob is None and result.data is None
    ):
        return ExecutionShape.CONVERSATION
    if result.blob is not None or result.kind == ExecutionKind.PDF:
        return ExecutionShape.FILE
    if result.data is not None or result.kind == ExecutionKind.JSON:
        return ExecutionShape.DATA
    if result.action or result.endpoint_name:
        return ExecutionShape.ACTION
    if result.content or result.response:
        return ExecutionShape.TEXT
    return ExecutionShape.FALLBACK


def is_job_analysis(data: Dict[str, Any]) -> bool:
    """Job-fit analysis payloads carry the job content and the fit verdict."""
    return isinstance(data, dict) and "job_content" in data and "fit_analysis" in data


def adapt_execution(result: ExecutionResult) -> NormalizedResponse:
    """
    Convert an executed endpoint result into a standard response.

    Every result maps to some variant; unknown shapes become a generic
    TextResponse.
    """
    shape = classify_execution(result)
    conversation_id = result.conversation_id

    if shape == ExecutionShape.FAILURE:
        suggestions: Optional[List[str]] = list(result.suggestions) if result.suggestions else None
        return ErrorResponse(
            error=result.error or result.message or OPERATION_FAILED,
            error_code=result.error_code,
            suggestions=suggestions,
            conversation_id=conversation_id,
        )

    if shape == ExecutionShape.CONVERSATION:
        return TextResponse(
            message=result.content or result.response or RESPONSE_RECEIVED,
            conversation_id=conversation_id,
        )

    if shape == ExecutionShape.FILE:
        return FileResponse(
            message=DOCUMENT_READY,
            file_type="pdf",
            filename=result.filename or "document.pdf",
            payload=result.blob,
            conversation_id=conversation_id,
        )

    if shape == ExecutionShape.DATA:
        data = result.data if result.data is not None else {}
        if is_job_analysis(data):
            message = ANALYSIS_COMPLETE
        else:
            message = result.message or DATA_RETRIEVED
        return DataResponse(message=message, payload=data, conversation_id=conversation_id)

    if shape == ExecutionShape.ACTION:
        return ActionResponse(
            message=result.message or OPERATION_COMPLETE,
            action=result.action or result.endpoint_name or "unknown_action",
            conversation_id=conversation_id,
        )

    if shape == ExecutionShape.TEXT:
        return TextResponse(
            message=result.content or result.response or RESPONSE_RECEIVED,
            conversation_id=conversation_id,
        )

    logger.debug(f"Unrecognized execution result shape: kind={result.kind}")
    return TextResponse(message=result.message or OPERATION_COMPLETE, conversation_id=conversation_id)
