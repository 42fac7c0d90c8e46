"""Shared test fixtures for the AI provider gateway tests."""

import json
from pathlib import Path
from typing import Dict, Optional

import pytest

from ai_gateway.config import GatewayConfig, load_config
from ai_gateway.gateway import Gateway

OPENAI_BASE = "https://api.example.com/v1"
OLLAMA_BASE = "http://ollama.test:11434"
BEDROCK_BASE = "https://bedrock-runtime.us-east-1.amazonaws.com"
PROXY_BASE = "https://abc123.execute-api.us-east-1.amazonaws.com/prod/invoke"


def _make_registry(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal provider registry and return its path."""
    registry = {
        "_config": {
            "defaultService": "ollama",
            "timeoutSeconds": 5,
            "logFile": str(tmp_path / "gateway.log"),
        },
        "openai": {
            "label": "OpenAI",
            "apiFormat": "openai",
            "baseUrl": OPENAI_BASE,
            "defaultModel": "gpt-4o-mini",
            "apiKeyEnv": "TEST_OPENAI_KEY",
        },
        "ollama": {
            "label": "Ollama",
            "apiFormat": "ollama",
            "baseUrl": OLLAMA_BASE + "/",
            "defaultModel": "llama3:latest",
        },
        "bedrock": {
            "label": "AWS Bedrock",
            "apiFormat": "bedrock",
            "baseUrl": BEDROCK_BASE,
            "defaultModel": "anthropic.claude-3-haiku-20240307-v1:0",
            "region": "us-east-1",
            "blockedClassifications": ["SECRET"],
        },
        "bedrock-proxy": {
            "apiFormat": "bedrock",
            "baseUrl": PROXY_BASE,
            "defaultModel": "amazon.titan-text-express-v1",
        },
        "onsite": {
            "apiFormat": "custom",
            "baseUrl": "https://llm.internal.test/v1",
            "requiresApiKey": False,
        },
    }
    if overrides:
        registry.update(overrides)

    path = tmp_path / "ai-providers.json"
    path.write_text(json.dumps(registry))
    return str(path)


@pytest.fixture()
def registry_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Return the path to a temporary provider registry."""
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    return _make_registry(tmp_path)


@pytest.fixture()
def gateway_config(registry_path: str) -> GatewayConfig:
    """Return the loaded test GatewayConfig."""
    return load_config(registry_path)


@pytest.fixture()
def gateway(gateway_config: GatewayConfig) -> Gateway:
    """Return a Gateway built from the test registry."""
    return Gateway.from_config(gateway_config)
