"""
Tests for Firebase token verification.

Tests for:
- user_from_token(): signature, key id, expiry, audience, issuer
- FirebaseKeySet: caching and refetching Google's signing keys
- get_optional_user() / get_current_user() dependencies
"""

from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from conftest import (
    TEST_JWKS,
    TEST_KEY_ID,
    generate_rsa_pem,
    jwks_transport,
    make_id_token,
    public_jwk,
)
from app.core import security
from app.core.security import FirebaseKeySet, user_from_token
from app.deps import SIGN_IN_MESSAGE, get_current_user, get_optional_user
from app.environments.base import AuthKeysError, AuthRequiredError
from app.schemas.user import SignedInUser


# Signing key nobody trusts
ROGUE_PEM = generate_rsa_pem()


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ===========================================================================
# USER FROM TOKEN
# ===========================================================================

class TestUserFromToken:
    """Tests for user_from_token()."""

    def test_valid_token(self):
        token = make_id_token("alice")

        user = user_from_token(token)

        assert user.uid == "alice"
        assert user.email == "alice@example.com"
        assert user.id_token == token

    def test_user_id_claim_without_sub(self):
        token = make_id_token("ignored", sub=None, user_id="from-user-id")
        assert user_from_token(token).uid == "from-user-id"

    def test_missing_uid(self):
        token = make_id_token(sub=None, user_id=None)

        with pytest.raises(AuthRequiredError, match="no user id"):
            user_from_token(token)

    def test_expired(self):
        with pytest.raises(AuthRequiredError, match="expired"):
            user_from_token(make_id_token(exp=1_700_000_000))

    def test_missing_expiry(self):
        with pytest.raises(AuthRequiredError):
            user_from_token(make_id_token(exp=None))

    def test_garbage_token(self):
        with pytest.raises(AuthRequiredError, match="Invalid authentication token"):
            user_from_token("definitely-not-a-jwt")

    def test_wrong_signing_key(self):
        # Same key id as the trusted key, different private key
        token = make_id_token("victim-uid", key=ROGUE_PEM)

        with pytest.raises(AuthRequiredError, match="Invalid authentication token"):
            user_from_token(token)

    def test_unknown_key_id(self):
        token = make_id_token("victim-uid", key=ROGUE_PEM, kid="rogue-key")

        with pytest.raises(AuthRequiredError, match="Invalid authentication token"):
            user_from_token(token)

    def test_hmac_token_is_rejected(self):
        token = jwt.encode(
            {"user_id": "victim-uid", "exp": 4102444800},
            "attacker-own-secret",
            algorithm="HS256",
            headers={"kid": TEST_KEY_ID},
        )

        with pytest.raises(AuthRequiredError, match="Invalid authentication token"):
            user_from_token(token)

    def test_audience_mismatch(self):
        with pytest.raises(AuthRequiredError, match="another project"):
            user_from_token(make_id_token(aud="someone-else"))

    def test_missing_audience(self):
        with pytest.raises(AuthRequiredError):
            user_from_token(make_id_token(aud=None))

    def test_issuer_mismatch(self):
        with pytest.raises(AuthRequiredError, match="another project"):
            user_from_token(make_id_token(iss="https://securetoken.google.com/someone-else"))

    @patch("app.core.security.settings")
    def test_unconfigured_project_rejects_everything(self, mock_settings):
        mock_settings.FIREBASE_PROJECT_ID = ""

        with pytest.raises(AuthRequiredError, match="not configured"):
            user_from_token(make_id_token())


# ===========================================================================
# SIGNING KEYS
# ===========================================================================

class TestFirebaseKeySet:
    """Tests for FirebaseKeySet."""

    def test_keys_are_cached(self):
        transport = jwks_transport()
        keys = FirebaseKeySet("https://keys.test/jwks", transport=transport.mock, clock=FakeClock())

        assert keys.get_key(TEST_KEY_ID)["kid"] == TEST_KEY_ID
        assert keys.get_key(TEST_KEY_ID)["kid"] == TEST_KEY_ID
        assert len(transport.requests) == 1

    def test_cache_follows_max_age(self):
        clock = FakeClock()
        transport = jwks_transport()
        keys = FirebaseKeySet("https://keys.test/jwks", transport=transport.mock, clock=clock)

        keys.get_key(TEST_KEY_ID)
        clock.now += 3601
        keys.get_key(TEST_KEY_ID)

        assert len(transport.requests) == 2

    def test_unknown_kid_refetches_at_most_once_a_minute(self):
        clock = FakeClock()
        transport = jwks_transport()
        keys = FirebaseKeySet("https://keys.test/jwks", transport=transport.mock, clock=clock)
        keys.get_key(TEST_KEY_ID)

        assert keys.get_key("rotated-key") is None
        assert keys.get_key("rotated-key") is None
        assert len(transport.requests) == 1

        clock.now += FirebaseKeySet.MIN_REFRESH_SECONDS
        keys.get_key("rotated-key")
        assert len(transport.requests) == 2

    def test_rotated_key_is_picked_up(self, monkeypatch):
        rotated_pem = generate_rsa_pem()
        published = {"keys": list(TEST_JWKS["keys"])}
        clock = FakeClock()
        keys = FirebaseKeySet(
            "https://keys.test/jwks", transport=jwks_transport(published).mock, clock=clock
        )
        monkeypatch.setattr(security, "firebase_keys", keys)
        user_from_token(make_id_token())

        published["keys"].append(public_jwk(rotated_pem, "rotated-key"))
        clock.now += FirebaseKeySet.MIN_REFRESH_SECONDS

        assert user_from_token(make_id_token("bob", key=rotated_pem, kid="rotated-key")).uid == "bob"

    def test_fetch_failure(self):
        keys = FirebaseKeySet("https://keys.test/jwks", transport=jwks_transport(status_code=500).mock)

        with pytest.raises(AuthKeysError) as exc_info:
            keys.get_key(TEST_KEY_ID)
        assert exc_info.value.status_code == 500


# ===========================================================================
# DEPENDENCIES
# ===========================================================================

class TestDependencies:
    """Tests for the auth dependencies."""

    def test_anonymous(self):
        assert get_optional_user(None) is None

    def test_optional_user_with_token(self):
        user = get_optional_user(_bearer(make_id_token("bob")))
        assert user.uid == "bob"

    def test_bad_token_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_optional_user(_bearer("garbage"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_forged_token_is_401(self):
        forged = make_id_token("victim-uid", key=ROGUE_PEM)

        with pytest.raises(HTTPException) as exc_info:
            get_optional_user(_bearer(forged))

        assert exc_info.value.status_code == 401

    def test_unreachable_keys_is_503(self, monkeypatch):
        keys = FirebaseKeySet("https://keys.test/jwks", transport=jwks_transport(status_code=502).mock)
        monkeypatch.setattr(security, "firebase_keys", keys)

        with pytest.raises(HTTPException) as exc_info:
            get_optional_user(_bearer(make_id_token()))

        assert exc_info.value.status_code == 503

    def test_current_user_required(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == SIGN_IN_MESSAGE

    def test_current_user_passthrough(self, signed_in_user: SignedInUser):
        assert get_current_user(signed_in_user) is signed_in_user

    @pytest.mark.asyncio
    async def test_user_hands_out_its_token(self, signed_in_user: SignedInUser):
        assert await signed_in_user.get_id_token() == "id-token-abc"
