"""Routing: resolve a service key to its provider configuration.

Resolution failures are configuration errors; they are fatal for the call
and never retried.
"""

from typing import Mapping, Optional

from ai_gateway.config import ProviderConfig
from ai_gateway.errors import UnknownServiceError


def resolve_provider(
    providers: Mapping[str, ProviderConfig],
    service: Optional[str],
    default_service: Optional[str] = None,
) -> ProviderConfig:
    """Resolve a service key to a configured provider.

    Args:
        providers: The provider registry keyed by service id.
        service: The service requested by the caller (may be empty).
        default_service: Registry default used when no service is requested.

    Returns:
        The matching ProviderConfig.

    Raises:
        UnknownServiceError: If the service is unknown or nothing is requested
            and no default is configured.
    """
    key = (service or "").strip() or default_service
    if not key:
        raise UnknownServiceError(
            "(none)", "No service requested and no default service configured."
        )

    provider = providers.get(key)
    if provider is None:
        available = ", ".join(sorted(providers.keys())) or "(none)"
        raise UnknownServiceError(
            key,
            "Not present in the provider registry. Available services: {}".format(
                available
            ),
        )

    return provider
