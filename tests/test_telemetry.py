"""Tests for logging helpers."""

import json
import logging
from pathlib import Path

import pytest

from ai_gateway.telemetry import log_call, logger, mask_secret, setup_logging


@pytest.mark.parametrize(
    "value, masked",
    [(None, "[EMPTY]"), ("", "[EMPTY]"), ("sk-abcdef123", "sk-a..."), ("ab", "ab...")],
)
def test_mask_secret(value, masked: str) -> None:
    assert mask_secret(value) == masked


def test_log_call_record(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="ai_gateway"):
        log_call(
            request_id="gw-abc",
            call_type="analysis",
            service="ollama",
            api_format="ollama",
            model="llama3:latest",
            outcome="success",
            status=200,
            duration_ms=12,
        )

    record = json.loads(caplog.records[-1].getMessage())
    assert record["request_id"] == "gw-abc"
    assert record["outcome"] == "success"
    assert record["status"] == 200
    assert "error" not in record
    assert caplog.records[-1].levelno == logging.INFO


def test_log_call_error_is_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="ai_gateway"):
        log_call(
            request_id="gw-abc",
            call_type="response",
            service="openai",
            outcome="provider_error",
            error="Server error",
        )
    assert caplog.records[-1].levelno == logging.WARNING


def test_setup_logging_installs_handlers_once(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(logger, "handlers", [])
    log_file = tmp_path / "logs" / "gateway.log"

    setup_logging(str(log_file))
    setup_logging(str(log_file))

    assert len(logger.handlers) == 2
    assert log_file.parent.is_dir()
    for handler in logger.handlers:
        handler.close()
