"""
API0 Client - Talk to the intent service and execute resolved endpoints.

API0 turns a free-text sentence into candidate backend API calls. It is
conversational: slot values accumulate across turns inside a server-side
conversation, so the client keeps the conversation id between calls.

Key Features:
=============
1. Lazy conversation start (every analyze runs inside a session)
2. Transparent recovery from an expired/invalid conversation (one retry)
3. Dynamic endpoint execution (verb/base/path come from the candidate)
4. Response classification by content type (pdf / json / text)

Usage Example:
==============
    from app.environments.api0 import API0Client

    client = API0Client(base_url="http://localhost:5009", api_key="key")

    candidates = await client.analyze_sentence("Generate CV for john-doe")
    if candidates:
        params = API0Client.extract_parameters(candidates[0].parameters)
        result = await client.execute_endpoint(candidates[0], params)

Concurrency:
============
One client instance serves one command at a time. Two overlapping
analyze calls would race on the lazy start and on the invalidate-and-retry
logic; CommandSession serializes commands per client.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from app.environments.base import (
    IntentServiceError,
    SessionInvalidError,
    EndpointExecutionError,
)
from app.environments.api0.schemas import (
    AnalysisCandidate,
    ExecutionKind,
    ExecutionResult,
    FileAttachment,
    ParameterBinding,
    StartConversationResponse,
)


logger = logging.getLogger("cvenom.environments.api0")


# Returns a fresh end-user bearer token; raises AuthRequiredError when nobody is signed in
AuthTokenProvider = Callable[[], Awaitable[str]]

DEFAULT_CONVERSATION_REPLY = "I can help you with your questions and commands."


class API0Client:
    """
    Intent service (API0) client.

    Owns exactly one conversation session. The conversation id is set by
    a successful start call, cleared by reset_conversation() and cleared
    transparently when API0 reports the session as invalid.

    Attributes:
        base_url: Root URL of the intent service
        api_key: Bearer key for the intent service
        user_id: Opaque end-user identifier sent when a session starts
        timeout: Per-request timeout in seconds
    """

    START_PATH = "/api/analyze/start"
    ANALYZE_PATH = "/api/analyze"

    # Session-invalid recovery is bounded: at most this many fresh sessions
    MAX_SESSION_RETRIES = 1

    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the intent service
            api_key: Bearer key for the intent service
            user_id: Signed-in user's uid, if any
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.user_id = user_id
        self.timeout = timeout
        self._transport = transport
        self._conversation_id: Optional[str] = None
        # Session invalidations seen by analyze_sentence (for monitoring)
        self.session_retries = 0

    # -------------------------------------------------------------------------
    # SESSION ACCESSORS
    # -------------------------------------------------------------------------

    def get_conversation_id(self) -> Optional[str]:
        return self._conversation_id

    def set_conversation_id(self, conversation_id: str) -> None:
        self._conversation_id = conversation_id

    def reset_conversation(self) -> None:
        """Forget the conversation id. The server-side session is abandoned, not closed."""
        self._conversation_id = None

    @property
    def has_conversation(self) -> bool:
        return self._conversation_id is not None

    # -------------------------------------------------------------------------
    # HTTP HELPERS
    # -------------------------------------------------------------------------

    def _get_headers(self) -> dict:
        """Headers for intent service requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _post_api0(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        """
        POST a JSON body to the intent service.

        Raises:
            IntentServiceError: On network failure (no status available)
        """
        url = f"{self.base_url}{path}"
        async with self._http_client() as client:
            try:
                return await client.post(url, json=body, headers=self._get_headers())
            except httpx.RequestError as e:
                logger.error(f"Network error calling API0 {path}: {e}")
                raise IntentServiceError(f"Network error: {e}")

    @staticmethod
    def _error_reason(response: httpx.Response) -> Optional[str]:
        """Best-effort reason from a JSON error body ("error" or "message")."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            reason = body.get("error") or body.get("message")
            if reason:
                return str(reason)
        return None

    @staticmethod
    def _is_session_invalid(status_code: int, reason: Optional[str]) -> bool:
        return status_code == 403 or (reason is not None and "conversation" in reason.lower())

    # -------------------------------------------------------------------------
    # CONVERSATION
    # -------------------------------------------------------------------------

    async def start_conversation(self, context: Optional[Dict[str, Any]] = None) -> str:
        """
        Start a new API0 conversation and remember its id.

        Args:
            context: Optional context map forwarded to API0

        Returns:
            The new conversation id

        Raises:
            IntentServiceError: If API0 refuses or cannot be reached
        """
        body: Dict[str, Any] = {}
        if self.user_id:
            body["user_id"] = self.user_id
        if context:
            body["context"] = context

        response = await self._post_api0(self.START_PATH, body)

        if not response.is_success:
            reason = self._error_reason(response) or f"HTTP {response.status_code}"
            logger.error(f"API0 start failed: {response.status_code} - {reason}")
            raise IntentServiceError(
                f"Failed to start conversation: {reason}",
                status_code=response.status_code,
                response=response.text,
            )

        try:
            started = StartConversationResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IntentServiceError(
                f"Failed to start conversation: malformed response ({e})",
                status_code=response.status_code,
                response=response.text,
            )

        self._conversation_id = started.conversation_id
        logger.info(f"API0 conversation started: {started.conversation_id}")
        return started.conversation_id

    # -------------------------------------------------------------------------
    # ANALYSIS
    # -------------------------------------------------------------------------

    def _build_analyze_body(
        self,
        sentence: str,
        attachments: Sequence[FileAttachment],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "conversation_id": self._conversation_id,
            "sentence": sentence,
        }
        # Only images go to API0; other files are for the executed endpoint
        images = [a.to_image_payload() for a in attachments if a.is_image]
        if images:
            body["images"] = images
            body["has_images"] = True
        return body

    def _parse_candidates(self, response: httpx.Response) -> List[AnalysisCandidate]:
        try:
            raw = response.json()
        except ValueError:
            raise IntentServiceError(
                "Analysis failed: response is not JSON",
                status_code=response.status_code,
                response=response.text,
            )
        if not isinstance(raw, list):
            raise IntentServiceError(
                "Analysis failed: expected a list of candidates",
                status_code=response.status_code,
                response=response.text,
            )

        candidates: List[AnalysisCandidate] = []
        for item in raw:
            try:
                candidate = AnalysisCandidate.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping malformed API0 candidate: {e}")
                continue
            if not candidate.conversation_id:
                candidate.conversation_id = self._conversation_id
            candidates.append(candidate)
        return candidates

    async def analyze_sentence(
        self,
        sentence: str,
        attachments: Sequence[FileAttachment] = (),
    ) -> List[AnalysisCandidate]:
        """
        Resolve a sentence into candidate endpoint calls.

        Starts a conversation first when none exists. If API0 rejects the
        conversation (403, or an error mentioning the conversation), the id
        is dropped and the call is retried once in a fresh conversation.

        Args:
            sentence: Free-text user request
            attachments: Files attached to this command (images are forwarded)

        Returns:
            Candidates, best first. Empty means "not understood".

        Raises:
            IntentServiceError: On any failure, including a second invalid session
        """
        last_error: Optional[SessionInvalidError] = None

        for attempt in range(self.MAX_SESSION_RETRIES + 1):
            if not self._conversation_id:
                await self.start_conversation()

            body = self._build_analyze_body(sentence, attachments)
            response = await self._post_api0(self.ANALYZE_PATH, body)

            if response.is_success:
                candidates = self._parse_candidates(response)
                logger.info(
                    f"API0 analyzed sentence ({len(sentence)} chars): "
                    f"{len(candidates)} candidate(s)"
                )
                return candidates

            reason = self._error_reason(response)
            if self._is_session_invalid(response.status_code, reason):
                logger.warning(
                    f"API0 conversation {self._conversation_id} invalid "
                    f"(status {response.status_code}, attempt {attempt + 1})"
                )
                self._conversation_id = None
                self.session_retries += 1
                last_error = SessionInvalidError(
                    reason or f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    response=response.text,
                )
                continue

            logger.error(f"API0 analyze failed: {response.status_code} - {reason}")
            raise IntentServiceError(
                reason or "Analysis failed",
                status_code=response.status_code,
                response=response.text,
            )

        raise IntentServiceError(
            f"Analysis failed: {last_error}",
            status_code=last_error.status_code if last_error else None,
            response=last_error.response if last_error else None,
        )

    # -------------------------------------------------------------------------
    # EXECUTION
    # -------------------------------------------------------------------------

    @staticmethod
    def extract_parameters(parameters: Sequence[ParameterBinding]) -> Dict[str, str]:
        """Effective value per binding; empty bindings are dropped."""
        params: Dict[str, str] = {}
        for param in parameters:
            value = param.effective_value
            if value:
                params[param.name] = value
        return params

    def _conversation_result(self, candidate: AnalysisCandidate) -> ExecutionResult:
        """Answer a pure-conversation endpoint from the candidate payload."""
        try:
            payload = json.loads(candidate.raw_payload)
            content = payload.get("response") or payload.get("content")
        except (ValueError, AttributeError) as e:
            logger.warning(f"Failed to parse conversation payload: {e}")
            content = None

        return ExecutionResult(
            kind=ExecutionKind.CONVERSATION,
            content=content or DEFAULT_CONVERSATION_REPLY,
            endpoint_name=candidate.endpoint.endpoint_name,
            conversation_id=candidate.conversation_id,
        )

    def _classify_response(
        self,
        response: httpx.Response,
        candidate: AnalysisCandidate,
    ) -> ExecutionResult:
        content_type = response.headers.get("content-type", "")
        common = {
            "endpoint_name": candidate.endpoint.endpoint_name,
            "conversation_id": candidate.conversation_id,
        }

        if "application/pdf" in content_type:
            return ExecutionResult(
                kind=ExecutionKind.PDF,
                blob=response.content,
                filename="document.pdf",  # the command service may override
                **common,
            )

        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                logger.warning(f"Endpoint {candidate.endpoint.endpoint_name} sent unparseable JSON")
                return ExecutionResult(kind=ExecutionKind.TEXT, content=response.text, **common)
            if not isinstance(data, dict):
                data = {"items": data}
            return ExecutionResult(kind=ExecutionKind.JSON, data=data, **common)

        return ExecutionResult(kind=ExecutionKind.TEXT, content=response.text, **common)

    async def _auth_headers(self, auth_token_provider: Optional[AuthTokenProvider]) -> dict:
        if auth_token_provider is None:
            return {}
        # Fetched per call, never cached
        token = await auth_token_provider()
        return {"Authorization": f"Bearer {token}"}

    async def execute_endpoint(
        self,
        candidate: AnalysisCandidate,
        params: Dict[str, str],
        auth_token_provider: Optional[AuthTokenProvider] = None,
    ) -> ExecutionResult:
        """
        Execute the backend call a candidate resolved to.

        Args:
            candidate: Resolved candidate (supplies base, path and verb)
            params: Parameters for the JSON body of mutating verbs
            auth_token_provider: End-user token source; None for anonymous calls

        Returns:
            ExecutionResult classified as conversation / pdf / json / text

        Raises:
            EndpointExecutionError: Unsupported verb, network error or non-2xx
            AuthRequiredError: Propagated from the token provider
        """
        if candidate.endpoint.is_pure_conversation:
            return self._conversation_result(candidate)

        try:
            verb = candidate.endpoint.http_verb()
        except ValueError:
            raise EndpointExecutionError(f"Unsupported HTTP verb: {candidate.endpoint.verb}")

        headers = {"Content-Type": "application/json"}
        headers.update(await self._auth_headers(auth_token_provider))

        body = None
        if verb.has_body:
            body = {
                **params,
                "conversation_id": candidate.conversation_id or self._conversation_id,
            }

        url = candidate.endpoint.url
        logger.info(f"Executing {verb.value} {url} ({candidate.endpoint.endpoint_name})")

        async with self._http_client() as client:
            try:
                response = await client.request(verb.value, url, headers=headers, json=body)
            except httpx.RequestError as e:
                logger.error(f"Network error executing {url}: {e}")
                raise EndpointExecutionError(f"Network error: {e}")

        if not response.is_success:
            # Raw text on purpose: backend error bodies are not guaranteed JSON
            error_text = response.text
            logger.error(f"Endpoint {url} failed: {response.status_code} - {error_text}")
            raise EndpointExecutionError(
                f"API call failed: {error_text}",
                status_code=response.status_code,
                response=error_text,
            )

        return self._classify_response(response, candidate)

    async def upload_file(
        self,
        url: str,
        fields: Dict[str, str],
        attachment: FileAttachment,
        auth_token_provider: Optional[AuthTokenProvider] = None,
    ) -> Dict[str, Any]:
        """
        POST one attachment as multipart form data.

        Args:
            url: Upload endpoint
            fields: Extra form fields (e.g. {"person": "john-doe"})
            attachment: File to send under the "file" field
            auth_token_provider: End-user token source

        Returns:
            Decoded JSON response body (empty dict when not JSON)

        Raises:
            EndpointExecutionError: Network error or non-2xx
        """
        headers = await self._auth_headers(auth_token_provider)
        files = {"file": (attachment.name, attachment.decoded(), attachment.mime_type)}

        async with self._http_client() as client:
            try:
                response = await client.post(url, data=fields, files=files, headers=headers)
            except httpx.RequestError as e:
                logger.error(f"Network error uploading to {url}: {e}")
                raise EndpointExecutionError(f"Network error: {e}")

        if not response.is_success:
            error_text = response.text
            logger.error(f"Upload to {url} failed: {response.status_code} - {error_text}")
            raise EndpointExecutionError(
                f"Upload failed: {error_text}",
                status_code=response.status_code,
                response=error_text,
            )

        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"items": body}
