"""
HTTP Surface Tests

Exercise the FastAPI routes through httpx's ASGI transport with the
pipeline dependencies overridden by in-memory collaborators.
"""

import time

import httpx
import jwt
import pytest
from pydantic import SecretStr

from study_guide_server.api.dependencies import get_quota_tracker, get_request_handler
from study_guide_server.config import settings
from study_guide_server.llm.client import ProviderError
from study_guide_server.main import create_app

JWT_SECRET = "test-secret-for-study-guide-tokens-0123456789"
ADMIN_KEY = "admin-secret-key"
SESSION = {"x-session-id": "anon-session-0001"}


@pytest.fixture(autouse=True)
def _secrets(monkeypatch):
    monkeypatch.setattr(settings, "jwt_secret", SecretStr(JWT_SECRET))
    monkeypatch.setattr(settings, "admin_api_key", SecretStr(ADMIN_KEY))


def _token(sub="user-123", audience="authenticated", expired=False, secret=JWT_SECRET):
    now = int(time.time())
    payload = {"sub": sub, "aud": audience, "iat": now, "exp": now - 10 if expired else now + 300}
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def build_client(make_handler, make_tracker):
    def _build(handler=None, tracker=None):
        app = create_app()
        if handler is not None:
            app.dependency_overrides[get_request_handler] = lambda: handler
        app.dependency_overrides[get_quota_tracker] = lambda: tracker or make_tracker()
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    return _build


def _body(value="John 3:16", input_type="scripture", language="en"):
    return {"input_type": input_type, "input_value": value, "language": language}


class TestGenerate:
    async def test_anonymous_success(self, build_client, make_handler, scripted_provider, valid_guide_json):
        handler = make_handler(scripted_provider(valid_guide_json))

        async with build_client(handler) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["data"]["input"] == {"type": "scripture", "value": "John 3:16", "language": "en"}
        assert data["data"]["content"]["related_verses"] == ["Romans 5:8", "1 John 4:9"]
        assert data["rate_limit"]["remaining"] == 0

    async def test_response_echoes_sanitised_input(self, build_client, make_handler, scripted_provider, valid_guide_json):
        handler = make_handler(scripted_provider(valid_guide_json))
        body = _body(value="<b>Grace</b> & peace", input_type="topic")

        async with build_client(handler) as client:
            resp = await client.post("/study/generate", json=body, headers=SESSION)

        assert resp.status_code == 200
        assert resp.json()["data"]["input"]["value"] == "Grace  peace"

    async def test_bearer_token_success(self, build_client, make_handler, scripted_provider, valid_guide_json):
        handler = make_handler(scripted_provider(valid_guide_json))
        headers = {"Authorization": f"Bearer {_token()}"}

        async with build_client(handler) as client:
            resp = await client.post("/study/generate", json=_body(), headers=headers)

        assert resp.status_code == 200
        assert resp.json()["rate_limit"]["limit"] == 5

    async def test_missing_identity(self, build_client, make_handler, scripted_provider):
        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body())
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "token",
        [
            _token(expired=True),
            _token(audience="someone-else"),
            _token(secret="a-completely-different-secret-value-000"),
            "not-a-jwt",
        ],
    )
    async def test_invalid_bearer_never_downgrades(self, build_client, make_handler, scripted_provider, token):
        headers = {"Authorization": f"Bearer {token}", **SESSION}

        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body(), headers=headers)

        assert resp.status_code == 401

    async def test_malformed_session_id(self, build_client, make_handler, scripted_provider):
        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body(), headers={"x-session-id": "bad id!"})
        assert resp.status_code == 401

    async def test_unsupported_language_is_422(self, build_client, make_handler, scripted_provider):
        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body(language="fr"), headers=SESSION)
        assert resp.status_code == 422

    async def test_rejected_input(self, build_client, make_handler, scripted_provider):
        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body(value="x" * 600, input_type="topic"), headers=SESSION)

        assert resp.status_code == 400
        assert resp.json()["error"] == "input_rejected"
        assert resp.json()["category"] == "TOO_LONG"

    async def test_rate_limited(self, build_client, make_handler, make_tracker, scripted_provider, valid_guide_json):
        tracker = make_tracker()
        handler = make_handler(scripted_provider(valid_guide_json), tracker=tracker)

        async with build_client(handler, tracker) as client:
            await client.post("/study/generate", json=_body(), headers=SESSION)
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert "reset_at" in resp.json()
        assert int(resp.headers["Retry-After"]) >= 1

    async def test_parse_exhausted_is_502(self, build_client, make_handler, scripted_provider):
        async with build_client(make_handler(scripted_provider("garbage"))) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 502
        assert resp.json()["error"] == "parse_exhausted"

    async def test_provider_error_text_not_leaked(self, build_client, make_handler, scripted_provider):
        error = ProviderError("openai returned HTTP 500: internal stack trace", retryable=True, status_code=500)

        async with build_client(make_handler(scripted_provider(error))) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 503
        assert "stack trace" not in resp.text

    async def test_timeout_is_504(self, build_client, make_handler, scripted_provider, valid_guide_json):
        handler = make_handler(scripted_provider(valid_guide_json, delay=5), timeout_seconds=0.05)

        async with build_client(handler) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 504

    async def test_persistence_failure_returns_content(
        self, build_client, make_handler, scripted_provider, failing_guide_repository, valid_guide_json
    ):
        handler = make_handler(scripted_provider(valid_guide_json), repository=failing_guide_repository)

        async with build_client(handler) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 500
        assert resp.json()["error"] == "persistence_failed"
        assert resp.json()["content"]["summary"]

    async def test_quota_backend_down_is_503(self, build_client, make_handler, quota_store, scripted_provider):
        quota_store.fail = True

        async with build_client(make_handler(scripted_provider("{}"))) as client:
            resp = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert resp.status_code == 503
        assert resp.json()["error"] == "quota_unavailable"


class TestAdmin:
    async def test_requires_key(self, build_client):
        async with build_client() as client:
            resp = await client.get("/admin/quota/anonymous/anon-session-0001")
        assert resp.status_code == 403

    async def test_wrong_key(self, build_client):
        async with build_client() as client:
            resp = await client.get(
                "/admin/quota/anonymous/anon-session-0001", headers={"x-admin-key": "nope"}
            )
        assert resp.status_code == 403

    async def test_query_string_key_not_accepted(self, build_client):
        async with build_client() as client:
            resp = await client.get(
                "/admin/quota/anonymous/anon-session-0001", params={"key": ADMIN_KEY}
            )
        assert resp.status_code == 403

    async def test_usage_and_reset(self, build_client, make_handler, make_tracker, scripted_provider, valid_guide_json):
        tracker = make_tracker()
        handler = make_handler(scripted_provider(valid_guide_json), tracker=tracker)
        admin = {"x-admin-key": ADMIN_KEY}

        async with build_client(handler, tracker) as client:
            await client.post("/study/generate", json=_body(), headers=SESSION)

            usage = await client.get("/admin/quota/anonymous/anon-session-0001", headers=admin)
            reset = await client.delete("/admin/quota/anonymous/anon-session-0001", headers=admin)
            again = await client.post("/study/generate", json=_body(), headers=SESSION)

        assert usage.status_code == 200
        assert usage.json()["count"] == 1
        assert usage.json()["limit"] == 1
        assert reset.json() == {"status": "reset", "removed": 1}
        assert again.status_code == 200


async def test_health(build_client):
    async with build_client() as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
