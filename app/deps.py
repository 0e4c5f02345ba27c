"""
Dependencies module - reusable FastAPI dependencies for route handlers.
get_optional_user reads the Firebase bearer token when present;
get_current_user additionally requires one.
"""

from fastapi import Depends, HTTPException, status  # FastAPI components
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials  # Auth header extraction

from app.core.security import user_from_token  # Token -> SignedInUser
from app.environments.base import AuthKeysError, AuthRequiredError
from app.schemas.user import SignedInUser

# ---------------------------------------------------------------------------
# SECURITY SCHEME
# ---------------------------------------------------------------------------
# HTTPBearer: Extracts tokens from the "Authorization: Bearer <token>" header
# - auto_error=False: a missing header yields None instead of a 403, so
#   anonymous callers can still reach suggestion/state endpoints
security = HTTPBearer(auto_error=False)

SIGN_IN_MESSAGE = "Please sign in to use this command"


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> SignedInUser | None:
    """
    Return the signed-in user, or None for anonymous requests.

    Raises:
        401 Unauthorized: If a token is present but fails verification
        503 Service Unavailable: If the signing keys cannot be fetched
    """
    if credentials is None:
        return None

    try:
        return user_from_token(credentials.credentials)
    except AuthRequiredError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},  # Standard header per RFC 6750
        )
    except AuthKeysError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )


def get_current_user(
    user: SignedInUser | None = Depends(get_optional_user),
) -> SignedInUser:
    """
    Require a signed-in user.

    Raises:
        401 Unauthorized: If no bearer token was sent
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=SIGN_IN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
