"""
API0 Schemas - Data structures for intent service operations.

These models represent the intent service ("API0") payloads in a clean,
typed format. The service returns loosely-shaped JSON where almost every
field may be missing, so every field here is optional or defaulted and
unknown fields are ignored.

Wire format of one analysis candidate (flat on the wire):
{
    "intent": 0,
    "api_group_id": "cv_operations",
    "endpoint_id": "generate_cv",
    "endpoint_name": "Generate CV",
    "base": "http://127.0.0.1:4002",
    "path": "/api/generate",
    "verb": "POST",
    "matching_info": {"completion_percentage": 100, ...},
    "parameters": [{"name": "person", "semantic_value": "john-doe"}],
    "user_prompt": "Which language?",
    "json_output": "{\"response\": \"...\"}",
    "conversation_id": "c-123"
}
"""

import base64
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------

class IntentKind(IntEnum):
    """Intent classification assigned by API0 (integer on the wire)."""
    ACTIONABLE = 0
    GENERAL_QUESTION = 1
    HELP = 2


class HttpVerb(str, Enum):
    """HTTP verbs an executed endpoint may use."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def has_body(self) -> bool:
        """Mutating verbs carry a JSON body."""
        return self in (HttpVerb.POST, HttpVerb.PUT, HttpVerb.PATCH)


class ExecutionKind(str, Enum):
    """Kind tag of a raw execution result."""
    CONVERSATION = "conversation"
    PDF = "pdf"
    JSON = "json"
    TEXT = "text"
    ERROR = "error"


# Endpoint ids / groups that are answered by API0 itself
CONVERSATION_GROUP_ID = "conversation"
CONVERSATION_ENDPOINT_ID = "general_conversation"


# ---------------------------------------------------------------------------
# ANALYSIS CANDIDATE
# ---------------------------------------------------------------------------

class ParameterBinding(BaseModel):
    """
    One parameter extracted from the user's sentence.

    `semantic_value` (normalized by API0) is preferred over the raw value.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: str = ""
    raw_value: Optional[str] = Field(None, alias="value")
    semantic_value: Optional[str] = None

    @field_validator("raw_value", "semantic_value", mode="before")
    @classmethod
    def coerce_to_string(cls, v: Any) -> Optional[str]:
        """API0 sometimes sends numbers or booleans as values."""
        if v is None:
            return None
        return v if isinstance(v, str) else str(v)

    @property
    def effective_value(self) -> Optional[str]:
        return self.semantic_value or self.raw_value or None


class EndpointRef(BaseModel):
    """Where and how a resolved candidate is executed."""
    model_config = ConfigDict(extra="ignore")

    base: str = ""
    path: str = ""
    verb: str = "GET"
    endpoint_id: str = ""
    endpoint_name: str = ""
    endpoint_description: str = ""
    api_group_id: str = ""
    api_group_name: str = ""
    essential_path: str = ""

    @property
    def url(self) -> str:
        return f"{self.base}{self.path}"

    @property
    def is_conversation_group(self) -> bool:
        return self.api_group_id == CONVERSATION_GROUP_ID

    @property
    def is_pure_conversation(self) -> bool:
        """Endpoint answered from the candidate payload, never over HTTP."""
        return CONVERSATION_ENDPOINT_ID in self.endpoint_id

    def http_verb(self) -> HttpVerb:
        """
        Validate the verb before dispatch.

        Raises:
            ValueError: If the verb is not one of HttpVerb
        """
        return HttpVerb(self.verb.strip().upper())


class CompletionInfo(BaseModel):
    """How much of the endpoint's parameter set API0 could fill so far."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    percent: float = Field(0, alias="completion_percentage")
    missing_required: List[str] = Field(default_factory=list, alias="missing_required_fields")
    missing_optional: List[str] = Field(default_factory=list, alias="missing_optional_fields")
    mapped_required: int = Field(0, alias="mapped_required_fields")
    mapped_optional: int = Field(0, alias="mapped_optional_fields")
    total_required: int = Field(0, alias="total_required_fields")
    total_optional: int = Field(0, alias="total_optional_fields")
    status: Optional[int] = None

    @field_validator("missing_required", "missing_optional", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> List[str]:
        return v or []

    @property
    def is_complete(self) -> bool:
        return self.percent >= 100 and not self.missing_required


class AnalysisCandidate(BaseModel):
    """
    One interpretation of a sentence returned by API0.

    Only the first (best) candidate of an analyze call is ever used.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: IntentKind = IntentKind.ACTIONABLE
    endpoint: EndpointRef = Field(default_factory=EndpointRef)
    completion: CompletionInfo = Field(default_factory=CompletionInfo, alias="matching_info")
    parameters: List[ParameterBinding] = Field(default_factory=list)
    prompt_for_user: str = Field("", alias="user_prompt")
    raw_payload: str = Field("", alias="json_output")
    conversation_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def nest_endpoint_fields(cls, data: Any) -> Any:
        """Lift the flat endpoint fields of the wire format into `endpoint`."""
        if not isinstance(data, dict) or "endpoint" in data:
            return data
        data = dict(data)
        data["endpoint"] = {
            key: data[key] for key in EndpointRef.model_fields if data.get(key) is not None
        }
        return data

    @field_validator("intent", mode="before")
    @classmethod
    def unknown_intent_is_actionable(cls, v: Any) -> IntentKind:
        try:
            return IntentKind(int(v))
        except (TypeError, ValueError):
            return IntentKind.ACTIONABLE

    @field_validator("completion", mode="before")
    @classmethod
    def none_to_empty_completion(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("parameters", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> List[Any]:
        return v or []

    @field_validator("prompt_for_user", "raw_payload", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return v or ""

    @property
    def is_conversational(self) -> bool:
        """General questions and help requests are never executed."""
        return self.intent in (IntentKind.GENERAL_QUESTION, IntentKind.HELP)


# ---------------------------------------------------------------------------
# CONVERSATION START
# ---------------------------------------------------------------------------

class StartConversationResponse(BaseModel):
    """Response body of POST /api/analyze/start."""
    model_config = ConfigDict(extra="ignore")

    conversation_id: str
    success: bool = True
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# ATTACHMENTS
# ---------------------------------------------------------------------------

class FileAttachment(BaseModel):
    """
    A file the user attached to one command.

    Built in memory before submission and owned by the caller for the
    duration of that command; never persisted.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    mime_type: str = Field(..., alias="type")
    size_bytes: int = Field(0, alias="size")
    data: str = Field(..., description="Base64 encoded content, no data URL prefix")
    preview: Optional[str] = Field(None, description="Data URL, images only")

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def decoded(self) -> bytes:
        return base64.b64decode(self.data)

    def to_image_payload(self) -> Dict[str, str]:
        """Shape API0 expects inside `images`."""
        return {"name": self.name, "type": self.mime_type, "data": self.data}


# ---------------------------------------------------------------------------
# EXECUTION RESULT
# ---------------------------------------------------------------------------

@dataclass
class ExecutionResult:
    """
    Raw outcome of executing a candidate.

    Deliberately loose: different endpoints fill different fields and one
    result may satisfy several shapes at once (e.g. `data` and `message`).
    The response adapter decides what it means.
    """
    kind: Optional[ExecutionKind] = None
    content: Optional[str] = None
    response: Optional[str] = None
    blob: Optional[bytes] = None
    filename: Optional[str] = None
    action: Optional[str] = None
    endpoint_name: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    conversation_id: Optional[str] = None

    # Failure reporting (endpoints may answer 2xx with success=false)
    success: Optional[bool] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    suggestions: Optional[List[str]] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.kind == ExecutionKind.ERROR or self.success is False
