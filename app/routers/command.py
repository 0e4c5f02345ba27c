"""
Command Router - API endpoints for the natural language command chat.

This router handles HTTP only. Every command goes through the user's
CommandSession, which owns the API0 conversation and serializes commands.

Architecture:
=============
```
┌─────────────────┐
│ "Generate CV    │
│  for john-doe"  │
└────────┬────────┘
         │
         ▼
┌─────────────────┐
│ Command Router  │  ← HTTP handling only (this file)
└────────┬────────┘
         │
         ▼
┌─────────────────┐
│ Command Session │  ← Per-user state, one command at a time
└────────┬────────┘
         │
         ▼
┌─────────────────┐
│ CV Command Svc  │  ← Analyze / clarify / execute / normalize
└─────────────────┘
```
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from app.deps import get_current_user
from app.environments.api0 import FileAttachment
from app.environments.base import IntentServiceError
from app.monitoring import command_monitor
from app.schemas.standard_response import NormalizedResponse
from app.schemas.user import SignedInUser
from app.services.attachments import enhance_sentence_with_attachments, process_uploads
from app.services.chat_renderer import render_command_result
from app.services.command_session import (
    CommandSession,
    CommandSessionManager,
    CommandSessionState,
    command_session_manager,
    get_command_suggestions,
)


# ---------------------------------------------------------------------------
# LOGGER SETUP
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ROUTER SETUP
# ---------------------------------------------------------------------------
router = APIRouter(prefix="/command", tags=["command"])

# Sentence used when only files were sent
ATTACHMENTS_ONLY_SENTENCE = "Process the uploaded files"


def get_session_manager() -> CommandSessionManager:
    """Session registry dependency (overridden in tests)."""
    return command_session_manager


# ---------------------------------------------------------------------------
# REQUEST/RESPONSE SCHEMAS
# ---------------------------------------------------------------------------

class AttachmentIn(BaseModel):
    """One attached file, base64 encoded without a data URL prefix."""
    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    data: str


class CommandRequest(BaseModel):
    """
    Request schema for POST /command.

    Example:
    {
        "text": "Upload picture for john-doe",
        "attachments": [{"name": "me.png", "mime_type": "image/png", "data": "iVBORw0..."}]
    }
    """
    text: str = Field(default="", max_length=2000, description="Natural language command")
    attachments: List[AttachmentIn] = Field(default_factory=list)


class CommandResponse(BaseModel):
    """
    Response schema for command endpoints.

    Example:
    {
        "success": true,
        "response": {"type": "file", "success": true, "message": "Document ready for download",
                     "filename": "cv-john-doe-en-default.pdf", "payload": "JVBERi0..."},
        "error": null,
        "message": "✅ Document ready for download",
        "conversation_id": "c-123"
    }
    """
    success: bool
    response: Optional[NormalizedResponse] = None
    error: Optional[str] = None
    message: str = Field(description="Chat-ready rendering of the outcome")
    conversation_id: Optional[str] = None


class SuggestionsResponse(BaseModel):
    suggestions: List[str]


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS
# ---------------------------------------------------------------------------

def _session_for(manager: CommandSessionManager, user: SignedInUser) -> CommandSession:
    try:
        return manager.get_session(user)
    except IntentServiceError as e:
        logger.error(f"Command service unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Command service unavailable: {e}",
        )


def _reject_attachments(errors: List[str]) -> None:
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(errors))


async def _run_command(
    session: CommandSession,
    text: str,
    attachments: List[FileAttachment],
) -> CommandResponse:
    sentence = enhance_sentence_with_attachments(
        text.strip() or ATTACHMENTS_ONLY_SENTENCE,
        attachments,
    )
    result = await session.execute_command(sentence, attachments)
    return CommandResponse(
        success=result.success,
        response=result.data,
        error=result.error,
        message=render_command_result(result).content,
        conversation_id=session.state.conversation_id,
    )


# ---------------------------------------------------------------------------
# ENDPOINTS
# ---------------------------------------------------------------------------

@router.post("", response_model=CommandResponse)
async def run_command(
    request: CommandRequest,
    current_user: SignedInUser = Depends(get_current_user),
    manager: CommandSessionManager = Depends(get_session_manager),
):
    """
    Run one natural language command.

    **Examples:**
    - "Generate CV for john-doe in English"
    - "Create person profile for jane-smith"
    - "What can you do?"

    Missing details come back as a text prompt; answer it in the next
    command to continue the same conversation.
    """
    if not request.text.strip() and not request.attachments:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty command")

    files = []
    for item in request.attachments:
        try:
            content = base64.b64decode(item.data, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Attachment is not valid base64: {item.name}",
            )
        files.append((item.name, item.mime_type, content))

    attachments, errors = process_uploads(files)
    _reject_attachments(errors)

    session = _session_for(manager, current_user)
    return await _run_command(session, request.text, attachments)


@router.post("/upload", response_model=CommandResponse)
async def run_command_with_files(
    text: str = Form(default=""),
    files: List[UploadFile] = File(default=[]),
    current_user: SignedInUser = Depends(get_current_user),
    manager: CommandSessionManager = Depends(get_session_manager),
):
    """Multipart variant of POST /command for browser file inputs."""
    if not text.strip() and not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty command")

    raw = []
    for upload in files:
        raw.append((
            upload.filename or "file",
            upload.content_type or "application/octet-stream",
            await upload.read(),
        ))

    attachments, errors = process_uploads(raw)
    _reject_attachments(errors)

    session = _session_for(manager, current_user)
    return await _run_command(session, text, attachments)


@router.post("/reset")
async def reset_conversation(
    current_user: SignedInUser = Depends(get_current_user),
    manager: CommandSessionManager = Depends(get_session_manager),
):
    """Start over: the next command opens a new API0 conversation."""
    manager.reset(current_user.uid)
    return {"status": "reset"}


@router.get("/state")
async def get_state(
    current_user: SignedInUser = Depends(get_current_user),
    manager: CommandSessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    """Loading flags and conversation of the caller's session."""
    session = manager.peek(current_user.uid)
    state = session.state if session else CommandSessionState()
    return state.to_dict()


@router.get("/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(q: str = ""):
    """Example commands matching the partial input `q`."""
    return SuggestionsResponse(suggestions=get_command_suggestions(q))


@router.get("/stats")
async def get_command_stats(
    current_user: SignedInUser = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Command usage statistics.

    Returns aggregated metrics since start:
    - Total, successful and failed commands
    - Executed commands and session retries
    - Average latency and counts per response type
    """
    return command_monitor.get_stats().to_dict()
