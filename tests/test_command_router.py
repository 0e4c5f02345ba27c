"""
Tests for the command router.

Tests for:
- POST /command (auth, attachments, normalized response)
- POST /command/upload (multipart)
- POST /command/reset, GET /command/state
- GET /command/suggestions, GET /command/stats
- GET /health
"""

import base64

import httpx
from jose import jwt

from conftest import RecordingTransport, api0_handler, generate_rsa_pem, make_candidate, make_id_token, param
from app.environments.base import IntentServiceError
from app.routers.command import get_session_manager
from app.main import app
from app.services.command_session import CommandSessionManager


def _pdf_backend(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"%PDF-1.7", headers={"content-type": "application/pdf"})


# ===========================================================================
# AUTH
# ===========================================================================

class TestAuth:
    """Commands require a Firebase bearer token."""

    def test_missing_token_is_401(self, client):
        response = client.post("/command", json={"text": "Generate CV"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Please sign in to use this command"

    def test_garbage_token_is_401(self, client):
        response = client.post(
            "/command",
            json={"text": "Generate CV"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authentication token"

    def test_expired_token_is_401(self, client):
        token = make_id_token(exp=1000)

        response = client.post(
            "/command", json={"text": "Generate CV"}, headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert "expired" in response.json()["detail"]

    def test_forged_token_cannot_reach_another_users_session(self, client, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([make_candidate(percent=10)])))
        victim = {"Authorization": f"Bearer {make_id_token('victim-uid')}"}
        assert client.post("/command", json={"text": "Generate CV"}, headers=victim).status_code == 200

        forged_tokens = [
            make_id_token("victim-uid", key=generate_rsa_pem()),
            jwt.encode({"user_id": "victim-uid", "exp": 4102444800}, "attacker-own-secret", algorithm="HS256"),
        ]
        for token in forged_tokens:
            headers = {"Authorization": f"Bearer {token}"}

            assert client.get("/command/state", headers=headers).status_code == 401
            assert client.post("/command/reset", headers=headers).status_code == 401

        state = client.get("/command/state", headers=victim).json()
        assert state["conversation_id"] == "conv-1"


# ===========================================================================
# POST /command
# ===========================================================================

class TestRunCommand:
    """Tests for POST /command."""

    def test_generate_cv(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler(
            [make_candidate(parameters=[param("person", value="Jane"), param("lang", value="fr")])],
            backend=_pdf_backend,
        ))
        session_manager_factory(transport)

        response = client.post("/command", json={"text": "Generate CV for Jane in French"}, headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["conversation_id"] == "conv-1"
        assert body["message"] == "✅ Document ready for download"
        assert body["response"]["type"] == "file"
        assert body["response"]["filename"] == "cv-jane-fr-default.pdf"
        assert base64.b64decode(body["response"]["payload"]) == b"%PDF-1.7"

        backend_request = transport.to_host("backend.test")[0]
        assert backend_request.headers["Authorization"] == auth_headers["Authorization"]

    def test_prompt_for_missing_slot(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler(
            [make_candidate(percent=50, user_prompt="Which person?")]
        ))
        session_manager_factory(transport)

        body = client.post("/command", json={"text": "Generate CV"}, headers=auth_headers).json()

        assert body["success"] is True
        assert body["response"] == {
            "type": "text",
            "success": True,
            "message": "Which person?",
            "conversation_id": "conv-1",
        }

    def test_not_understood(self, client, auth_headers, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([])))

        body = client.post("/command", json={"text": "asdkjasd"}, headers=auth_headers).json()

        assert body["success"] is False
        assert body["response"] is None
        assert "didn't understand" in body["error"]
        assert body["message"].startswith("❌ ")

    def test_image_attachment_is_forwarded(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler([]))
        session_manager_factory(transport)
        data = base64.b64encode(b"\x89PNG").decode()

        client.post(
            "/command",
            json={
                "text": "Upload picture for jane",
                "attachments": [{"name": "me.png", "mime_type": "image/png", "data": data}],
            },
            headers=auth_headers,
        )

        body = transport.json_bodies("/api/analyze")[0]
        assert body["sentence"] == "Upload picture for jane with 1 image attachment"
        assert body["images"] == [{"name": "me.png", "type": "image/png", "data": data}]

    def test_unsupported_attachment_is_400(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler([]))
        session_manager_factory(transport)
        data = base64.b64encode(b"PK").decode()

        response = client.post(
            "/command",
            json={"text": "x", "attachments": [{"name": "a.zip", "mime_type": "application/zip", "data": data}]},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "File type not supported: a.zip" in response.json()["detail"]
        assert transport.requests == []

    def test_invalid_base64_is_400(self, client, auth_headers, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([])))

        response = client.post(
            "/command",
            json={"text": "x", "attachments": [{"name": "a.png", "mime_type": "image/png", "data": "!!!"}]},
            headers=auth_headers,
        )

        assert response.status_code == 400

    def test_empty_command_is_400(self, client, auth_headers, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([])))

        response = client.post("/command", json={"text": "   "}, headers=auth_headers)

        assert response.status_code == 400

    def test_unconfigured_service_is_503(self, client, auth_headers):
        def unconfigured(user):
            raise IntentServiceError("API0_API_KEY not configured")

        manager = CommandSessionManager(ttl_seconds=60, service_factory=unconfigured)
        app.dependency_overrides[get_session_manager] = lambda: manager
        try:
            response = client.post("/command", json={"text": "Generate CV"}, headers=auth_headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert "API0_API_KEY not configured" in response.json()["detail"]


# ===========================================================================
# POST /command/upload
# ===========================================================================

class TestUpload:
    """Tests for POST /command/upload."""

    def test_multipart_upload(self, client, auth_headers, session_manager_factory):
        uploads = []

        def backend(request):
            uploads.append(request)
            return httpx.Response(200, json={"stored": True})

        transport = RecordingTransport(api0_handler(
            [make_candidate(
                endpoint_name="Upload Picture",
                api_group_id="image_operations",
                parameters=[param("person", value="jane")],
            )],
            backend=backend,
        ))
        session_manager_factory(transport)

        response = client.post(
            "/command/upload",
            data={"text": "Upload picture for jane"},
            files=[("files", ("me.png", b"\x89PNG", "image/png"))],
            headers=auth_headers,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["response"]["type"] == "data"
        assert body["response"]["message"] == "Profile picture uploaded successfully for jane"
        assert uploads[0].url.path == "/api/upload-picture"

    def test_files_only(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler([]))
        session_manager_factory(transport)

        client.post(
            "/command/upload",
            files=[("files", ("notes.txt", b"hello", "text/plain"))],
            headers=auth_headers,
        )

        body = transport.json_bodies("/api/analyze")[0]
        assert body["sentence"] == "Process the uploaded files with 1 file attachment"


# ===========================================================================
# SESSION ENDPOINTS
# ===========================================================================

class TestSessionEndpoints:
    """Tests for /command/reset and /command/state."""

    def test_state_without_session(self, client, auth_headers, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([])))

        body = client.get("/command/state", headers=auth_headers).json()

        assert body["conversation_id"] is None
        assert body["is_loading"] is False

    def test_state_after_command_and_reset(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler(
            [make_candidate(percent=10, user_prompt="Which person?")],
            conversation_id="conv-9",
        ))
        session_manager_factory(transport)
        client.post("/command", json={"text": "Generate CV"}, headers=auth_headers)

        state = client.get("/command/state", headers=auth_headers).json()
        assert state["conversation_id"] == "conv-1"
        assert state["conversation_started"] is True
        assert state["last_success"] is True

        assert client.post("/command/reset", headers=auth_headers).json() == {"status": "reset"}

        state = client.get("/command/state", headers=auth_headers).json()
        assert state["conversation_id"] is None
        assert state["conversation_started"] is False

    def test_reset_starts_a_new_conversation(self, client, auth_headers, session_manager_factory):
        transport = RecordingTransport(api0_handler([make_candidate(percent=10)]))
        session_manager_factory(transport)

        client.post("/command", json={"text": "one"}, headers=auth_headers)
        client.post("/command/reset", headers=auth_headers)
        client.post("/command", json={"text": "two"}, headers=auth_headers)

        assert transport.paths.count("/api/analyze/start") == 2


# ===========================================================================
# SUGGESTIONS, STATS, HEALTH
# ===========================================================================

class TestMisc:
    """Anonymous and monitoring endpoints."""

    def test_suggestions_are_public(self, client):
        response = client.get("/command/suggestions", params={"q": "template"})

        assert response.status_code == 200
        assert response.json() == {
            "suggestions": ["Get CV templates", "Generate PDF for john-doe using keyteo template"]
        }

    def test_blank_suggestions(self, client):
        assert len(client.get("/command/suggestions").json()["suggestions"]) == 4

    def test_stats(self, client, auth_headers, session_manager_factory):
        session_manager_factory(RecordingTransport(api0_handler([])))
        client.post("/command", json={"text": "asdkjasd"}, headers=auth_headers)

        stats = client.get("/command/stats", headers=auth_headers).json()

        assert stats["total_commands"] == 1
        assert stats["failed_commands"] == 1
        assert stats["commands_by_type"] == {"error": 1}

    def test_stats_require_auth(self, client):
        assert client.get("/command/stats").status_code == 401

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_openapi_lists_command_routes(self, client):
        paths = client.get("/openapi.json").json()["paths"]
        assert "/command" in paths
        assert "/command/upload" in paths
