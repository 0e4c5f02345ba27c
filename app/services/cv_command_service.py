"""
CV Command Service - CV-specific policy on top of the API0 client.

This is the single boundary between the command pipeline and its callers:
every exception raised by the client, the adapter or the token provider is
caught here and returned as a failed CommandResult.

Flow per command:
=================
```
sentence ──► analyze ──┬─► no candidates ─────────► error ("didn't understand")
                       ├─► question/help/chat ────► adapt_analysis (no execute)
                       ├─► slots missing ─────────► Text(prompt_for_user)
                       └─► complete ──► execute ──► adapt_execution
```

CV policy applied here (and nowhere else):
- `person` parameters are lowercased (profile folder names)
- Executed calls carry the signed-in user's Firebase token
- Generated CV PDFs get a deterministic filename
- Image attachments on an upload/picture endpoint go to the picture upload

Usage:
======
```python
from app.services.cv_command_service import get_command_service

service = get_command_service(user=current_user)
result = await service.process_and_execute("Generate CV for John-Doe in French")
if result.success:
    print(result.data.type)
```
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import httpx

from app.core.config import settings
from app.environments.api0 import (
    API0Client,
    AnalysisCandidate,
    ExecutionKind,
    ExecutionResult,
    FileAttachment,
)
from app.environments.base import AuthRequiredError, IntentServiceError
from app.monitoring import command_monitor
from app.schemas.standard_response import NormalizedResponse, TextResponse
from app.schemas.user import SignedInUser
from app.services.response_adapter import adapt_analysis, adapt_execution


logger = logging.getLogger("cvenom.services.cv_command")


# ---------------------------------------------------------------------------
# MESSAGES
# ---------------------------------------------------------------------------
NOT_UNDERSTOOD_ERROR = (
    "I didn't understand that command. Try being more specific about what you want to do."
)
MORE_INFO_PROMPT = "Please provide more information to continue."
SIGN_IN_REQUIRED = "Please sign in to use this command"
UPLOAD_PERSON_REQUIRED = (
    "Please specify which collaborator to upload the image for "
    '(e.g., "Upload picture for john-doe")'
)
GENERIC_FAILURE = "Command execution failed"

IMAGE_OPERATIONS_GROUP = "image_operations"
UPLOAD_PICTURE_PATH = "/upload-picture"


# ---------------------------------------------------------------------------
# RESULT
# ---------------------------------------------------------------------------

@dataclass
class CommandResult:
    """
    Outcome of one command.

    success=True always carries `data`; success=False always carries `error`.
    """
    success: bool
    data: Optional[NormalizedResponse] = None
    error: Optional[str] = None

    @property
    def conversation_id(self) -> Optional[str]:
        return self.data.conversation_id if self.data is not None else None


# ---------------------------------------------------------------------------
# SERVICE
# ---------------------------------------------------------------------------

class CVCommandService:
    """
    Turns one free-text command into one normalized response.

    Holds one API0Client (and therefore one conversation). Not safe for
    overlapping commands; CommandSession serializes them.
    """

    def __init__(self, client: API0Client, user: Optional[SignedInUser] = None):
        self.client = client
        self.current_user = user

    def set_user(self, user: Optional[SignedInUser]) -> None:
        """Swap the signed-in user (token refresh or sign-out)."""
        self.current_user = user
        self.client.user_id = user.uid if user else None

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    async def get_auth_token(self) -> str:
        """
        Token provider for executed endpoints.

        Raises:
            AuthRequiredError: If nobody is signed in
        """
        if self.current_user is None:
            raise AuthRequiredError(SIGN_IN_REQUIRED)
        return await self.current_user.get_id_token()

    # -------------------------------------------------------------------------
    # MAIN ENTRY POINT
    # -------------------------------------------------------------------------

    async def process_and_execute(
        self,
        sentence: str,
        attachments: Sequence[FileAttachment] = (),
    ) -> CommandResult:
        """
        Understand, then converse, clarify or execute.

        Args:
            sentence: Free-text user request
            attachments: Files attached to this command

        Returns:
            CommandResult; never raises
        """
        request_id = str(uuid.uuid4())
        start_time = time.time()
        retries_before = self.client.session_retries
        executed = False

        command_monitor.track_request(
            request_id,
            sentence,
            user_id=self.current_user.uid if self.current_user else None,
            attachment_count=len(attachments),
            conversation_id=self.client.get_conversation_id(),
        )

        try:
            candidates = await self.client.analyze_sentence(sentence, attachments)

            if self.client.session_retries > retries_before:
                command_monitor.track_session_retry(request_id, self.client.get_conversation_id())

            if not candidates:
                return self._finish(
                    request_id, start_time, CommandResult(success=False, error=NOT_UNDERSTOOD_ERROR)
                )

            best = candidates[0]
            command_monitor.track_intent(
                request_id,
                intent=best.intent.name,
                endpoint_id=best.endpoint.endpoint_id,
                completion_percent=best.completion.percent,
                missing_required=best.completion.missing_required,
            )

            # Converse: answered by API0 itself
            if best.is_conversational or (
                best.endpoint.is_conversation_group and best.endpoint.is_pure_conversation
            ):
                return self._finish(
                    request_id, start_time, CommandResult(success=True, data=adapt_analysis([best]))
                )

            # Clarify: the next sentence continues the same conversation
            if not best.completion.is_complete:
                prompt = TextResponse(
                    message=best.prompt_for_user or MORE_INFO_PROMPT,
                    conversation_id=best.conversation_id,
                )
                return self._finish(request_id, start_time, CommandResult(success=True, data=prompt))

            # Execute
            params = self.client.extract_parameters(best.parameters)
            if "person" in params:
                params["person"] = params["person"].lower()

            exec_start = time.time()
            if self._is_image_upload(best, attachments):
                result = await self._upload_image(best, params, attachments)
            else:
                result = await self.client.execute_endpoint(best, params, self.get_auth_token)
            executed = True
            command_monitor.track_execution(
                request_id,
                endpoint_name=best.endpoint.endpoint_name,
                result_kind=result.kind.value if result.kind else None,
                latency_ms=(time.time() - exec_start) * 1000,
            )

            if result.kind == ExecutionKind.PDF and result.blob is not None:
                result.filename = self.generate_cv_filename(best, params)

            return self._finish(
                request_id,
                start_time,
                CommandResult(success=True, data=adapt_execution(result)),
                executed=True,
            )

        except Exception as e:
            message = str(e) or GENERIC_FAILURE
            logger.error(f"Command failed: {message}")
            command_monitor.track_error(
                request_id,
                message,
                stage="execute" if executed else "analyze",
                metadata={"error_type": type(e).__name__},
            )
            return self._finish(
                request_id,
                start_time,
                CommandResult(success=False, error=message),
                executed=executed,
            )

    def _finish(
        self,
        request_id: str,
        start_time: float,
        result: CommandResult,
        executed: bool = False,
    ) -> CommandResult:
        command_monitor.track_response(
            request_id=request_id,
            response_type=result.data.type.value if result.data is not None else "error",
            success=result.success and result.data is not None and result.data.success,
            latency_ms=(time.time() - start_time) * 1000,
            executed=executed,
            error=result.error,
        )
        return result

    # -------------------------------------------------------------------------
    # CV POLICY
    # -------------------------------------------------------------------------

    @staticmethod
    def generate_cv_filename(candidate: AnalysisCandidate, params: Dict[str, str]) -> str:
        """
        Deterministic filename for generated CVs.

        Returns:
            "cv-<person>-<lang>-<template>.pdf" when the endpoint name or
            description mentions a CV/resume,
            "document.pdf" for any other PDF
        """
        described = f"{candidate.endpoint.endpoint_name} {candidate.endpoint.endpoint_description}".lower()
        if "cv" not in described and "resume" not in described:
            return "document.pdf"

        person = params.get("person") or params.get("name") or "document"
        template = params.get("template") or "default"
        lang = params.get("lang") or params.get("language") or "en"
        return f"cv-{person}-{lang}-{template}.pdf"

    @staticmethod
    def _is_image_upload(
        candidate: AnalysisCandidate,
        attachments: Sequence[FileAttachment],
    ) -> bool:
        if not any(a.is_image for a in attachments):
            return False
        name = candidate.endpoint.endpoint_name.lower()
        return (
            "upload" in name
            or "picture" in name
            or candidate.endpoint.api_group_id == IMAGE_OPERATIONS_GROUP
        )

    async def _upload_image(
        self,
        candidate: AnalysisCandidate,
        params: Dict[str, str],
        attachments: Sequence[FileAttachment],
    ) -> ExecutionResult:
        """
        Send the first image attachment to the profile picture upload.

        Raises:
            ValueError: If the sentence named no collaborator
            AuthRequiredError: If nobody is signed in
            EndpointExecutionError: If the upload fails
        """
        person = params.get("person") or (params.get("name") or "").lower()
        if not person:
            raise ValueError(UPLOAD_PERSON_REQUIRED)

        image = next(a for a in attachments if a.is_image)
        url = f"{candidate.endpoint.base.rstrip('/')}{UPLOAD_PICTURE_PATH}"
        body = await self.client.upload_file(
            url,
            {"person": person},
            image,
            auth_token_provider=self.get_auth_token,
        )

        return ExecutionResult(
            kind=ExecutionKind.JSON,
            endpoint_name=candidate.endpoint.endpoint_name,
            message=f"Profile picture uploaded successfully for {person}",
            data={"person": person, "filename": image.name, **body},
            conversation_id=candidate.conversation_id,
        )

    # -------------------------------------------------------------------------
    # SESSION DELEGATES
    # -------------------------------------------------------------------------

    def get_conversation_id(self) -> Optional[str]:
        return self.client.get_conversation_id()

    def reset_conversation(self) -> None:
        self.client.reset_conversation()

    def set_conversation_id(self, conversation_id: str) -> None:
        self.client.set_conversation_id(conversation_id)

    async def start_conversation(self, context: Optional[dict] = None) -> str:
        return await self.client.start_conversation(context)


# ---------------------------------------------------------------------------
# FACTORY
# ---------------------------------------------------------------------------

def get_command_service(
    user: Optional[SignedInUser] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CVCommandService:
    """
    Build a command service wired to the configured intent service.

    Each call returns a new service with its own conversation.

    Raises:
        IntentServiceError: If API0_API_KEY is not configured
    """
    if not settings.API0_API_KEY:
        raise IntentServiceError("API0_API_KEY not configured")

    client = API0Client(
        base_url=settings.API0_BASE_URL,
        api_key=settings.API0_API_KEY,
        user_id=user.uid if user else None,
        timeout=settings.API0_REQUEST_TIMEOUT,
        transport=transport,
    )
    return CVCommandService(client, user=user)
