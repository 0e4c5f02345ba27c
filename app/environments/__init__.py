"""
Environments Module - External Service Integrations

This module holds the clients for services the gateway talks to over HTTP.

Architecture Overview:
======================
environments/
├── __init__.py           # Module exports
├── base.py               # Error taxonomy shared by all clients
└── api0/                 # Intent service (natural language -> API call)
    ├── __init__.py
    ├── client.py         # Conversation session + analyze + execute
    └── schemas.py        # Candidate, parameter and execution structures

Design Principles:
==================
1. The client owns its conversation session (no module-level state)
2. Raw service JSON is parsed leniently at the boundary
3. Clients raise; the CV command service is the single catch boundary
"""

from app.environments.base import (
    EnvironmentError,
    APIError,
    IntentServiceError,
    SessionInvalidError,
    EndpointExecutionError,
    AuthKeysError,
    AuthRequiredError,
    AttachmentError,
)

__all__ = [
    "EnvironmentError",
    "APIError",
    "IntentServiceError",
    "SessionInvalidError",
    "EndpointExecutionError",
    "AuthKeysError",
    "AuthRequiredError",
    "AttachmentError",
]
