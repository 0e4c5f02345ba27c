"""
API0 Module - Intent service integration.

This module provides:
- API0Client: conversation session, sentence analysis, endpoint execution
- AnalysisCandidate / ParameterBinding: parsed analyze results
- ExecutionResult: raw outcome of an executed endpoint

Usage:
======
    from app.environments.api0 import API0Client

    client = API0Client(base_url="http://localhost:5009", api_key="key")
    candidates = await client.analyze_sentence("Create profile for jane-smith")
"""

from app.environments.api0.client import API0Client, AuthTokenProvider
from app.environments.api0.schemas import (
    AnalysisCandidate,
    CompletionInfo,
    EndpointRef,
    ExecutionKind,
    ExecutionResult,
    FileAttachment,
    HttpVerb,
    IntentKind,
    ParameterBinding,
    StartConversationResponse,
)

__all__ = [
    "API0Client",
    "AuthTokenProvider",
    "AnalysisCandidate",
    "CompletionInfo",
    "EndpointRef",
    "ExecutionKind",
    "ExecutionResult",
    "FileAttachment",
    "HttpVerb",
    "IntentKind",
    "ParameterBinding",
    "StartConversationResponse",
]
