"""Tests for HTTP status classification."""

import pytest

from ai_gateway.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ProviderRequestError,
    RateLimitError,
    TransientServerError,
    body_excerpt,
    error_for_status,
)


@pytest.mark.parametrize(
    "status, error_cls, prefix",
    [
        (401, AuthenticationError, "Authentication failed"),
        (403, PermissionDeniedError, "Access forbidden"),
        (404, NotFoundError, "Service not found"),
        (429, RateLimitError, "Rate limit exceeded"),
        (500, TransientServerError, "Server error"),
        (503, TransientServerError, "Server error"),
        (400, ProviderRequestError, "API request failed with HTTP 400."),
        (405, ProviderRequestError, "API request failed with HTTP 405."),
    ],
)
def test_error_for_status(status: int, error_cls: type, prefix: str) -> None:
    error = error_for_status(status, "", service="openai")
    assert type(error) is error_cls
    assert error.detail.startswith(prefix)
    assert error.status_code == status
    assert error.service == "openai"


def test_json_error_message_excerpt() -> None:
    error = error_for_status(401, '{"error": {"message": "Incorrect API key provided"}}')
    assert error.body_excerpt == "Incorrect API key provided"
    assert error.detail.endswith("(Incorrect API key provided)")


@pytest.mark.parametrize(
    "body, expected",
    [
        ('{"error": "model not found"}', "model not found"),
        ('{"message": "The security token included in the request is invalid."}',
         "The security token included in the request is invalid."),
        ("", None),
    ],
)
def test_body_excerpt(body: str, expected) -> None:
    assert body_excerpt(body) == expected


def test_non_json_excerpt_truncated() -> None:
    assert body_excerpt("<html>" + "x" * 500) == ("<html>" + "x" * 500)[:200]
