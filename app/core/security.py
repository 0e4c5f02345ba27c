"""
Security utilities - verify end-user Firebase ID tokens.
Tokens are RS256 JWTs signed by Google. The signing keys are published as a
JWK set and rotate every few hours, so they are fetched and cached here.
"""

import logging
import re
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt  # python-jose library for JWT decoding
from jose.exceptions import JWTClaimsError

from app.core.config import settings  # App configuration
from app.environments.base import AuthKeysError, AuthRequiredError
from app.schemas.user import SignedInUser


logger = logging.getLogger("cvenom.security")

# Firebase ID tokens are always RS256; anything else is rejected before lookup
FIREBASE_ALGORITHMS = ["RS256"]
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"

INVALID_TOKEN = "Invalid authentication token"


# ---------------------------------------------------------------------------
# SIGNING KEYS
# ---------------------------------------------------------------------------

class FirebaseKeySet:
    """
    Cached copy of Google's Firebase signing keys.

    The cache lives as long as the Cache-Control max-age of the response. An
    unknown key id forces a refetch, at most once per MIN_REFRESH_SECONDS.

    Usage:
        keys = FirebaseKeySet(settings.FIREBASE_CERTS_URL)
        jwk = keys.get_key(kid)
    """

    DEFAULT_MAX_AGE = 3600
    MIN_REFRESH_SECONDS = 60

    def __init__(
        self,
        url: str,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url
        self._transport = transport
        self._clock = clock
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._expires_at = 0.0
        self._fetched_at: Optional[float] = None
        self._lock = Lock()

    @staticmethod
    def _max_age(cache_control: str) -> int:
        match = re.search(r"max-age=(\d+)", cache_control)
        return int(match.group(1)) if match else FirebaseKeySet.DEFAULT_MAX_AGE

    def _refresh(self) -> None:
        try:
            with httpx.Client(transport=self._transport, timeout=10.0) as client:
                response = client.get(self.url)
        except httpx.RequestError as e:
            raise AuthKeysError(f"Could not fetch Firebase signing keys: {e}")

        if response.status_code != 200:
            raise AuthKeysError(
                "Could not fetch Firebase signing keys",
                status_code=response.status_code,
                response=response.text,
            )

        try:
            published = response.json().get("keys", [])
        except (ValueError, AttributeError):
            raise AuthKeysError("Firebase signing keys are not a JWK set", response=response.text)

        now = self._clock()
        self._keys = {
            key["kid"]: key
            for key in published
            if isinstance(key, dict) and key.get("kid")
        }
        self._fetched_at = now
        self._expires_at = now + self._max_age(response.headers.get("cache-control", ""))
        logger.info(f"Loaded {len(self._keys)} Firebase signing key(s)")

    def get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """
        JWK for a key id, or None when Google does not publish it.

        Raises:
            AuthKeysError: If the key set cannot be fetched
        """
        with self._lock:
            now = self._clock()
            if now >= self._expires_at:
                self._refresh()
            elif kid not in self._keys and (
                self._fetched_at is None or now - self._fetched_at >= self.MIN_REFRESH_SECONDS
            ):
                self._refresh()
            return self._keys.get(kid)


# ---------------------------------------------------------------------------
# TOKEN VERIFICATION
# ---------------------------------------------------------------------------

def verify_id_token(token: str) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its claims.

    Checks performed:
        1. Header names an RS256 key Google currently publishes
        2. Signature matches that key
        3. Not expired ("exp")
        4. Audience is FIREBASE_PROJECT_ID and issuer is its securetoken URL

    Args:
        token: A Firebase ID token ("xxxxx.yyyyy.zzzzz")

    Returns:
        The claims dictionary

    Raises:
        AuthRequiredError: If any check fails or no project is configured
        AuthKeysError: If the signing keys cannot be fetched
    """
    project_id = settings.FIREBASE_PROJECT_ID
    if not project_id:
        logger.error("FIREBASE_PROJECT_ID not configured, rejecting all tokens")
        raise AuthRequiredError("Authentication is not configured")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        raise AuthRequiredError(INVALID_TOKEN)

    if header.get("alg") not in FIREBASE_ALGORITHMS or not header.get("kid"):
        raise AuthRequiredError(INVALID_TOKEN)

    key = firebase_keys.get_key(header["kid"])
    if key is None:
        raise AuthRequiredError(INVALID_TOKEN)

    try:
        return jwt.decode(
            token,
            key,
            algorithms=FIREBASE_ALGORITHMS,
            audience=project_id,
            issuer=FIREBASE_ISSUER_PREFIX + project_id,
            options={"require_aud": True, "require_iss": True, "require_exp": True},
        )
    except ExpiredSignatureError:
        raise AuthRequiredError("Authentication token expired, please sign in again")
    except JWTClaimsError:
        raise AuthRequiredError("Authentication token was issued for another project")
    except JWTError:
        raise AuthRequiredError(INVALID_TOKEN)


def user_from_token(token: str) -> SignedInUser:
    """
    Build a SignedInUser from a verified Firebase ID token.

    Args:
        token: Raw bearer token

    Returns:
        SignedInUser carrying the uid and the raw token

    Raises:
        AuthRequiredError: If the token fails verification or has no user id
        AuthKeysError: If the signing keys cannot be fetched
    """
    claims = verify_id_token(token)

    uid = claims.get("sub") or claims.get("user_id")
    if not uid:
        raise AuthRequiredError("Authentication token has no user id")

    return SignedInUser(uid=str(uid), email=claims.get("email"), id_token=token)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
firebase_keys = FirebaseKeySet(settings.FIREBASE_CERTS_URL)
