"""Smoke tests for the HTTP facade.

Tests cover the completion endpoint, preprocessing, model listing, health
checks and the mapping of gateway errors onto HTTP statuses.
"""

from typing import Dict, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from respx import MockRouter

from ai_gateway import app as app_module
from ai_gateway.app import app

OLLAMA_BASE = "http://ollama.test:11434"
OPENAI_BASE = "https://api.example.com/v1"


@pytest.fixture(autouse=True)
def _reset_app_state(registry_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point the app to the test registry and reset cached state."""
    monkeypatch.setattr(app_module, "CONFIG_PATH", registry_path)
    monkeypatch.setattr(app_module, "_config", None)
    monkeypatch.setattr(app_module, "_gateway", None)


def _make_request_body(
    service: str = "ollama",
    prompt: str = "Hello",
    api_key: Optional[str] = None,
    email_content: Optional[str] = None,
) -> Dict:
    config = {"service": service}
    if api_key:
        config["apiKey"] = api_key
    body = {"prompt": prompt, "config": config}
    if email_content is not None:
        body["email_content"] = email_content
    return body


async def _post(path: str, body: Dict) -> httpx.Response:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(path, json=body)


@pytest.mark.asyncio
async def test_complete_happy_path(respx_mock: MockRouter) -> None:
    respx_mock.post(OLLAMA_BASE + "/api/chat").mock(
        return_value=httpx.Response(200, json={"message": {"content": "Hi back"}})
    )

    resp = await _post("/v1/complete", _make_request_body())

    assert resp.status_code == 200
    data = resp.json()
    assert data["id"].startswith("gw-")
    assert data["text"] == "Hi back"
    assert data["service"] == "ollama"
    assert data["model"] == "llama3:latest"
    assert data["api_format"] == "ollama"
    assert data["used_fallback"] is False
    assert data["truncation"] is None


@pytest.mark.asyncio
async def test_complete_reports_diagnostics(respx_mock: MockRouter) -> None:
    respx_mock.post(OLLAMA_BASE + "/api/chat").mock(
        return_value=httpx.Response(200, json={"response": "ok"})
    )

    resp = await _post(
        "/v1/complete",
        _make_request_body(prompt="Analyze {{emailContent}}", email_content="Plain body"),
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["truncation"]["was_truncated"] is False
    assert data["html_conversion"]["was_converted"] is False


@pytest.mark.asyncio
async def test_unknown_service_is_400() -> None:
    resp = await _post("/v1/complete", _make_request_body(service="gemini"))

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["type"] == "configuration_error"
    assert "gemini" in error["message"]


@pytest.mark.asyncio
async def test_missing_key_is_400() -> None:
    resp = await _post("/v1/complete", _make_request_body(service="openai"))
    assert resp.status_code == 400
    assert "API key is required" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_classification_block_is_403() -> None:
    resp = await _post(
        "/v1/complete",
        _make_request_body(
            service="bedrock",
            api_key="AKIAEXAMPLE:secretKey",
            email_content="Classification: SECRET\n\nDetails follow.",
        ),
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["type"] == "classification_blocked"


@pytest.mark.asyncio
async def test_upstream_failure_is_502(respx_mock: MockRouter) -> None:
    respx_mock.post(OPENAI_BASE + "/chat/completions").mock(
        return_value=httpx.Response(429, json={"error": {"message": "Slow down"}})
    )

    resp = await _post("/v1/complete", _make_request_body(service="openai", api_key="sk"))

    assert resp.status_code == 502
    error = resp.json()["error"]
    assert error["type"] == "rate_limit_exceeded"
    assert error["status_code"] == 429
    assert error["body_excerpt"] == "Slow down"


@pytest.mark.asyncio
async def test_connection_failure_is_504(respx_mock: MockRouter) -> None:
    respx_mock.post(OLLAMA_BASE + "/api/chat").mock(side_effect=httpx.ConnectTimeout("timed out"))

    resp = await _post("/v1/complete", _make_request_body())

    assert resp.status_code == 504
    assert resp.json()["error"]["type"] == "connection_error"


@pytest.mark.asyncio
async def test_empty_prompt_is_422() -> None:
    resp = await _post("/v1/complete", _make_request_body(prompt=""))

    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "validation_error"


@pytest.mark.asyncio
async def test_preprocess_endpoint() -> None:
    html = "<div style='x'><table><tr><td>a</td></tr></table></div>" * 5
    resp = await _post("/v1/preprocess", {"content": "Classification: CONFIDENTIAL\n" + html})

    assert resp.status_code == 200
    data = resp.json()
    assert data["classification"] == "CONFIDENTIAL"
    assert data["html_analysis"]["contains_html"] is True
    assert data["conversion"]["was_converted"] is True
    assert "<div" not in data["content"]
    assert data["notices"]


@pytest.mark.asyncio
async def test_models_endpoint(respx_mock: MockRouter) -> None:
    respx_mock.get(OLLAMA_BASE + "/api/tags").mock(
        return_value=httpx.Response(200, json={"models": [{"name": "llama3:latest"}]})
    )

    resp = await _post("/v1/models", {"service": "ollama"})

    assert resp.status_code == 200
    assert resp.json() == {
        "service": "ollama",
        "models": [{"id": "llama3:latest", "name": "llama3:latest", "provider": "Ollama"}],
    }


@pytest.mark.asyncio
async def test_health_endpoint(respx_mock: MockRouter) -> None:
    respx_mock.post(OLLAMA_BASE + "/api/chat").mock(return_value=httpx.Response(500))

    resp = await _post("/v1/health", {"service": "ollama"})

    assert resp.status_code == 200
    assert resp.json() == {"service": "ollama", "healthy": False}


@pytest.mark.asyncio
async def test_providers_endpoint_hides_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-should-not-leak")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/v1/providers")

    assert resp.status_code == 200
    providers = {p["service"]: p for p in resp.json()["providers"]}
    assert providers["openai"]["label"] == "OpenAI"
    assert providers["ollama"]["requires_api_key"] is False
    assert providers["onsite"]["api_format"] == "custom"
    assert "sk-should-not-leak" not in resp.text
