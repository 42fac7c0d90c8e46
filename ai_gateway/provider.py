"""HTTP execution against provider APIs.

Sending never raises for an HTTP status: every response becomes an
HttpOutcome that the dispatcher inspects explicitly (fallback, error
classification). Only transport failures raise.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ai_gateway.errors import GatewayError, ProviderConnectionError, error_for_status


@dataclass
class HttpOutcome:
    """Result of one HTTP exchange with a provider."""

    status_code: int
    text: str
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """Decode the body as JSON; a non-JSON body is returned as text."""
        try:
            return json.loads(self.text)
        except ValueError:
            return self.text

    def to_error(self, service: Optional[str] = None) -> GatewayError:
        return error_for_status(self.status_code, self.text, service)


def serialize_body(body: Dict[str, Any]) -> str:
    """Serialize a request body exactly once, so signed bytes equal sent bytes."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    content: Optional[str] = None,
    service: Optional[str] = None,
) -> HttpOutcome:
    """Send one request and capture the response.

    Args:
        client: The HTTP client to use; its timeout applies.
        method: HTTP method.
        url: Full request URL.
        headers: Request headers.
        content: Pre-serialized body, sent as-is.
        service: Service key, for error context.

    Returns:
        An HttpOutcome with the status and body text.

    Raises:
        ProviderConnectionError: If the request could not be completed.
    """
    try:
        resp = await client.request(
            method,
            url,
            headers=headers,
            content=content.encode("utf-8") if content is not None else None,
        )
    except httpx.TimeoutException as exc:
        raise ProviderConnectionError(
            "Timed out waiting for the AI service at {}.".format(url),
            service=service,
        ) from exc
    except httpx.RequestError as exc:
        raise ProviderConnectionError(
            "Failed to reach the AI service at {}: {}".format(url, exc),
            service=service,
        ) from exc

    return HttpOutcome(status_code=resp.status_code, text=resp.text, url=url)
