"""Provider registry and gateway configuration.

Reads the provider registry (the ``ai-providers`` document maintained by the
host application) from a JSON or YAML file and validates each entry into a
strict ProviderConfig. Missing required fields fail here, at load time,
instead of deep inside request building.
"""

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ai_gateway.errors import ConfigurationError

FALLBACK_MODEL = "llama3:latest"
DEFAULT_REGION = "us-east-1"


class ApiFormat(str, Enum):
    """Wire protocol spoken by a provider."""

    OPENAI = "openai"
    OLLAMA = "ollama"
    BEDROCK = "bedrock"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for a single backend, as read from the registry."""

    service_key: str
    api_format: ApiFormat
    base_url: str
    default_model: Optional[str] = None
    requires_api_key: bool = True
    blocked_classifications: List[str] = field(default_factory=list)
    label: Optional[str] = None
    api_key_env: Optional[str] = None
    region: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.label or self.service_key

    @property
    def env_api_key(self) -> Optional[str]:
        """Resolve the fallback API key from the environment, if configured."""
        if not self.api_key_env:
            return None
        return os.getenv(self.api_key_env)


@dataclass(frozen=True)
class PromptLimits:
    """Character budgets applied to outbound email content."""

    max_total_prompt_length: int = 32000
    max_email_content_length: int = 20000
    warning_email_length: int = 15000
    additional_prompt_estimate: int = 2000


@dataclass
class GatewayConfig:
    """Top-level gateway configuration."""

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    default_service: Optional[str] = None
    limits: PromptLimits = field(default_factory=PromptLimits)
    timeout_seconds: float = 60.0
    log_file: Optional[str] = None


def parse_api_format(service: str, value: Any) -> ApiFormat:
    """Parse the ``apiFormat`` tag of a registry entry."""
    if value is None:
        raise ConfigurationError(
            "Provider '{}' is missing required field 'apiFormat'.".format(service),
            service=service,
        )
    try:
        return ApiFormat(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(f.value for f in ApiFormat)
        raise ConfigurationError(
            "Provider '{}' has unsupported apiFormat '{}'. Expected one of: {}".format(
                service, value, allowed
            ),
            service=service,
        )


def parse_provider(service: str, raw: Mapping[str, Any]) -> ProviderConfig:
    """Validate a single registry entry into a ProviderConfig.

    Raises:
        ConfigurationError: If a required field is missing or malformed.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            "Provider '{}' must be a mapping.".format(service), service=service
        )

    api_format = parse_api_format(service, raw.get("apiFormat"))

    base_url = raw.get("baseUrl")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigurationError(
            "Provider '{}' is missing required field 'baseUrl'.".format(service),
            service=service,
        )

    blocked = raw.get("blockedClassifications") or []
    if isinstance(blocked, str):
        blocked = [blocked]
    if not isinstance(blocked, list):
        raise ConfigurationError(
            "Provider '{}': 'blockedClassifications' must be a list.".format(service),
            service=service,
        )

    requires_api_key = raw.get("requiresApiKey")
    if requires_api_key is None:
        requires_api_key = api_format != ApiFormat.OLLAMA

    return ProviderConfig(
        service_key=service,
        api_format=api_format,
        base_url=base_url.strip(),
        default_model=raw.get("defaultModel") or None,
        requires_api_key=bool(requires_api_key),
        blocked_classifications=[str(k) for k in blocked],
        label=raw.get("label"),
        api_key_env=raw.get("apiKeyEnv"),
        region=raw.get("region"),
    )


def parse_providers(raw: Mapping[str, Any]) -> Dict[str, ProviderConfig]:
    """Parse every provider in a registry document.

    Keys starting with an underscore hold metadata and are skipped.
    """
    providers: Dict[str, ProviderConfig] = {}
    for service, entry in raw.items():
        if service.startswith("_"):
            continue
        providers[service] = parse_provider(service, entry)
    return providers


def parse_config(raw: Mapping[str, Any]) -> GatewayConfig:
    """Build a GatewayConfig from an already-parsed registry document."""
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Provider registry must be a mapping at the top level.")

    meta: Dict[str, Any] = raw.get("_config") or {}
    limits_raw: Dict[str, Any] = meta.get("limits") or {}
    defaults = PromptLimits()
    limits = PromptLimits(
        max_total_prompt_length=limits_raw.get(
            "maxTotalPromptLength", defaults.max_total_prompt_length
        ),
        max_email_content_length=limits_raw.get(
            "maxEmailContentLength", defaults.max_email_content_length
        ),
        warning_email_length=limits_raw.get(
            "warningEmailLength", defaults.warning_email_length
        ),
        additional_prompt_estimate=limits_raw.get(
            "additionalPromptEstimate", defaults.additional_prompt_estimate
        ),
    )

    providers = parse_providers(raw)

    default_service = meta.get("defaultService")
    if default_service is not None and default_service not in providers:
        raise ConfigurationError(
            "Default service '{}' is not defined in the registry.".format(
                default_service
            )
        )

    return GatewayConfig(
        providers=providers,
        default_service=default_service,
        limits=limits,
        timeout_seconds=float(meta.get("timeoutSeconds", 60.0)),
        log_file=meta.get("logFile"),
    )


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Load the provider registry from a JSON or YAML file.

    Args:
        path: Path to the registry file (``.json``, ``.yaml`` or ``.yml``).

    Returns:
        A fully validated GatewayConfig instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            if path.suffix.lower() in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
        except (ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                "Could not parse provider registry {}: {}".format(path, exc)
            ) from exc

    return parse_config(raw)
