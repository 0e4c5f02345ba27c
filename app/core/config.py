"""
Configuration module - centralized settings for the command chat gateway.
Uses pydantic-settings to load values from environment variables and .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic-settings automatically:
    1. Reads from environment variables (highest priority)
    2. Falls back to .env file values
    3. Uses default values if neither exists

    To override in production, set environment variables:
        export API0_BASE_URL=https://api0.example.com
        export API0_API_KEY=your-api0-key
    """

    # ---------------------------------------------------------------------------
    # PYDANTIC SETTINGS CONFIGURATION
    # ---------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",        # Load from .env file in project root
        env_file_encoding="utf-8",
        extra="ignore",         # Ignore extra env vars not defined here
    )

    # ---------------------------------------------------------------------------
    # APPLICATION SETTINGS
    # ---------------------------------------------------------------------------
    # APP_NAME: Display name shown in API docs and logging
    APP_NAME: str = "CVenom Command Chat"

    # DEBUG: Enable debug mode (more verbose errors, auto-reload in dev)
    DEBUG: bool = False

    # ---------------------------------------------------------------------------
    # INTENT SERVICE (API0) SETTINGS
    # ---------------------------------------------------------------------------
    # API0_BASE_URL: Root of the natural-language-to-API-call service
    # - /api/analyze/start and /api/analyze live under this URL
    API0_BASE_URL: str = "http://localhost:5009"

    # API0_API_KEY: Bearer key for the intent service itself
    # - Distinct from the end-user Firebase token used for executed calls
    # - Left empty, the command service refuses to start
    API0_API_KEY: str = ""

    # Timeout in seconds for every intent service and execution request
    API0_REQUEST_TIMEOUT: float = 60.0

    # ---------------------------------------------------------------------------
    # FIREBASE SETTINGS
    # ---------------------------------------------------------------------------
    # FIREBASE_PROJECT_ID: Expected "aud" claim of end-user ID tokens
    # - Issuer must be https://securetoken.google.com/<project id>
    # - Left empty, every token is rejected
    FIREBASE_PROJECT_ID: str = ""

    # FIREBASE_CERTS_URL: JWK set of the keys Google signs ID tokens with
    FIREBASE_CERTS_URL: str = (
        "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )

    # ---------------------------------------------------------------------------
    # COMMAND SESSION SETTINGS
    # ---------------------------------------------------------------------------
    # Idle time after which a user's command session (and its conversation id)
    # is dropped
    COMMAND_SESSION_TTL_SECONDS: int = 60 * 30  # 30 minutes

    # ---------------------------------------------------------------------------
    # ATTACHMENT LIMITS
    # ---------------------------------------------------------------------------
    # Checked before an attachment is base64 encoded
    IMAGE_MAX_BYTES: int = 5 * 1024 * 1024    # 5MB
    FILE_MAX_BYTES: int = 10 * 1024 * 1024    # 10MB


# ---------------------------------------------------------------------------
# GLOBAL SETTINGS INSTANCE
# ---------------------------------------------------------------------------
# Usage: from app.core.config import settings
settings = Settings()
