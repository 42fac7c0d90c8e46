"""Error taxonomy for the AI provider gateway.

Every error surfaced to the caller derives from GatewayError and carries a
user-actionable message plus, where an upstream call was made, the HTTP
status and an excerpt of the response body so the host can render a
specific remediation hint.
"""

import json
from typing import Optional


class GatewayError(Exception):
    """Base class for all errors raised by the gateway."""

    error_type = "gateway_error"

    def __init__(
        self,
        detail: str,
        *,
        status_code: Optional[int] = None,
        body_excerpt: Optional[str] = None,
        service: Optional[str] = None,
    ) -> None:
        self.detail = detail
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        self.service = service
        super().__init__(detail)


class ConfigurationError(GatewayError):
    """Unknown or unconfigured service, bad registry entry, missing key."""

    error_type = "configuration_error"


class UnknownServiceError(ConfigurationError):
    """Raised when a service key is not present in the provider registry."""

    def __init__(self, service: str, reason: str) -> None:
        self.reason = reason
        super().__init__(
            "AI service '{}' is not configured: {}".format(service, reason),
            service=service,
        )


class UnsupportedModelFamilyError(ConfigurationError):
    """Raised for a Bedrock model id whose vendor prefix is not supported."""

    def __init__(self, model: str, family: str) -> None:
        self.model = model
        self.family = family
        super().__init__(
            "Unsupported Bedrock model family '{}' (model '{}').".format(family, model)
        )


class MissingApiKeyError(ConfigurationError):
    """Raised when a provider requires an API key and none was supplied."""


class AuthenticationError(GatewayError):
    """401 from the provider, or credentials that could not be decoded."""

    error_type = "authentication_error"


class PermissionDeniedError(AuthenticationError):
    """403 from the provider."""

    error_type = "permission_error"


class CredentialDecodingError(AuthenticationError):
    """Raised when an encoded credential blob cannot be decoded."""


class NotFoundError(GatewayError):
    error_type = "not_found"


class RateLimitError(GatewayError):
    error_type = "rate_limit_exceeded"


class TransientServerError(GatewayError):
    error_type = "server_error"


class ProtocolMismatchError(GatewayError):
    """The backend rejected the verb (HTTP 405) even after the fallback."""

    error_type = "protocol_mismatch"


class ProviderRequestError(GatewayError):
    """Any other non-2xx status."""

    error_type = "provider_error"


class ProviderConnectionError(GatewayError):
    """Transport-level failure: DNS, refused connection, timeout."""

    error_type = "connection_error"


class ClassificationBlockedError(GatewayError):
    """Content carries a classification marking the provider is barred from."""

    error_type = "classification_blocked"


_EXCERPT_LENGTH = 200

_STATUS_MESSAGES = {
    401: (
        AuthenticationError,
        "Authentication failed: your API key is invalid or missing. "
        "Check the API key configured for this service.",
    ),
    403: (
        PermissionDeniedError,
        "Access forbidden: your API key may not have permission to access this "
        "service. Verify the key's permissions or contact your administrator.",
    ),
    404: (
        NotFoundError,
        "Service not found: the API endpoint may be incorrect. "
        "Verify the endpoint URL for this service.",
    ),
    429: (
        RateLimitError,
        "Rate limit exceeded: too many requests. Wait a moment and try again.",
    ),
}


def body_excerpt(body: str) -> Optional[str]:
    """Return the most useful short description of an error response body.

    A JSON body contributes its error message; anything else is cut to the
    first 200 characters.
    """
    if not body or not body.strip():
        return None

    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:_EXCERPT_LENGTH]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]

    return body.strip()[:_EXCERPT_LENGTH]


def error_for_status(
    status: int, body: str, service: Optional[str] = None
) -> GatewayError:
    """Map a failed HTTP status to the matching gateway error.

    The error is returned rather than raised so the dispatcher decides when
    a failure is final.
    """
    excerpt = body_excerpt(body)

    if status in _STATUS_MESSAGES:
        error_cls, message = _STATUS_MESSAGES[status]
    elif status >= 500:
        error_cls = TransientServerError
        message = (
            "Server error: the AI service is experiencing issues. "
            "Please try again later."
        )
    else:
        error_cls = ProviderRequestError
        message = "API request failed with HTTP {}.".format(status)

    if excerpt:
        message = "{} ({})".format(message, excerpt)

    return error_cls(
        message,
        status_code=status,
        body_excerpt=excerpt,
        service=service,
    )
