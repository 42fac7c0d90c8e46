"""Request building: translate a prompt into a backend-specific request.

Each provider format gets its own endpoint suffix, headers and body shape.
Bedrock additionally dispatches on the model family (the vendor prefix of
the model id) and on whether it is reached directly or through a CORS proxy.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from ai_gateway.config import FALLBACK_MODEL, ApiFormat, ProviderConfig
from ai_gateway.errors import UnsupportedModelFamilyError
from ai_gateway.models import CallConfig

DEFAULT_BASE_URL = "http://localhost:11434/v1"
PROXY_MARKER = "execute-api"

OPENAI_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that specializes in email tasks including "
    "analysis, responses, forwarding, summarizing, and composition. Be flexible "
    "about the type of email assistance needed. Provide clear, professional, "
    "and actionable insights."
)

BEDROCK_MAX_TOKENS = 4000
ANTHROPIC_BEDROCK_VERSION = "bedrock-2023-05-31"


class BedrockFamily(str, Enum):
    """Vendor prefix of a Bedrock model id; decides the payload shape."""

    ANTHROPIC = "anthropic"
    AMAZON = "amazon"
    AI21 = "ai21"
    COHERE = "cohere"


@dataclass
class ProviderRequest:
    """A fully built request, ready to sign and send."""

    endpoint: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    model: str
    api_format: ApiFormat
    family: Optional[BedrockFamily] = None
    base_url: str = ""
    via_proxy: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


def wire_format(provider: ProviderConfig) -> ApiFormat:
    """The protocol actually spoken; ``custom`` providers speak OpenAI."""
    if provider.api_format == ApiFormat.CUSTOM:
        return ApiFormat.OPENAI
    return provider.api_format


def model_family(model: str) -> BedrockFamily:
    """Return the Bedrock family of a model id such as ``anthropic.claude-v2``.

    Raises:
        UnsupportedModelFamilyError: For any other vendor prefix.
    """
    prefix = model.split(".", 1)[0].strip().lower()
    try:
        return BedrockFamily(prefix)
    except ValueError:
        raise UnsupportedModelFamilyError(model, prefix)


def resolve_base_url(provider: ProviderConfig, call: CallConfig) -> str:
    """Caller override, then registry base URL, then the local default."""
    if call.endpoint_url and call.endpoint_url.strip():
        base = call.endpoint_url.strip()
    elif provider.base_url:
        base = provider.base_url
    else:
        base = DEFAULT_BASE_URL

    base = base.rstrip("/")
    if provider.api_format == ApiFormat.BEDROCK and base.endswith("/chat/completions"):
        base = base[: -len("/chat/completions")]
    return base


def resolve_model(provider: ProviderConfig, call: CallConfig) -> str:
    """Caller override, then the provider default, then a fixed fallback."""
    if call.model and call.model.strip():
        return call.model.strip()
    if provider.default_model:
        return provider.default_model
    return FALLBACK_MODEL


def build_openai_request(
    prompt: str, base_url: str, model: str, api_key: Optional[str]
) -> ProviderRequest:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = "Bearer {}".format(api_key)

    return ProviderRequest(
        endpoint="{}/chat/completions".format(base_url),
        headers=headers,
        body={
            "model": model,
            "messages": [
                {"role": "system", "content": OPENAI_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.7,
        },
        model=model,
        api_format=ApiFormat.OPENAI,
        base_url=base_url,
    )


def build_ollama_request(
    prompt: str, base_url: str, model: str, api_key: Optional[str] = None
) -> ProviderRequest:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = "Bearer {}".format(api_key)

    return ProviderRequest(
        endpoint="{}/api/chat".format(base_url),
        headers=headers,
        body={
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        },
        model=model,
        api_format=ApiFormat.OLLAMA,
        base_url=base_url,
    )


def build_ollama_generate_fallback(request: ProviderRequest) -> ProviderRequest:
    """Reshape an Ollama ``/api/chat`` request for ``/api/generate``.

    The prompt is the content of the first chat message; headers are reused.
    """
    messages = request.body.get("messages") or [{}]
    return replace(
        request,
        endpoint="{}/api/generate".format(request.base_url),
        headers=dict(request.headers),
        body={
            "model": request.body.get("model", request.model),
            "prompt": messages[0].get("content", ""),
            "stream": False,
        },
    )


def bedrock_body(family: BedrockFamily, prompt: str) -> Dict[str, Any]:
    """Request payload for a Bedrock model family."""
    if family == BedrockFamily.ANTHROPIC:
        return {
            "anthropic_version": ANTHROPIC_BEDROCK_VERSION,
            "max_tokens": BEDROCK_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
    if family == BedrockFamily.AMAZON:
        return {
            "inputText": prompt,
            "textGenerationConfig": {
                "maxTokenCount": BEDROCK_MAX_TOKENS,
                "temperature": 0.7,
                "topP": 0.9,
            },
        }
    if family == BedrockFamily.AI21:
        return {"prompt": prompt, "maxTokens": BEDROCK_MAX_TOKENS, "temperature": 0.7}
    if family == BedrockFamily.COHERE:
        return {"prompt": prompt, "max_tokens": BEDROCK_MAX_TOKENS, "temperature": 0.7}
    raise UnsupportedModelFamilyError(family.value, family.value)


def is_proxy_endpoint(base_url: str) -> bool:
    return PROXY_MARKER in base_url


def build_bedrock_request(prompt: str, base_url: str, model: str) -> ProviderRequest:
    """Build an unsigned Bedrock InvokeModel request.

    A CORS proxy (API Gateway ``execute-api`` URL) is called verbatim and
    receives the model id in the body; Bedrock itself is called at
    ``/model/<model>/invoke``. Authentication headers are added later.
    """
    family = model_family(model)
    body = bedrock_body(family, prompt)
    via_proxy = is_proxy_endpoint(base_url)

    if via_proxy:
        endpoint = base_url
        body["modelId"] = model
    else:
        endpoint = "{}/model/{}/invoke".format(base_url, model)

    return ProviderRequest(
        endpoint=endpoint,
        headers={"Content-Type": "application/json"},
        body=body,
        model=model,
        api_format=ApiFormat.BEDROCK,
        family=family,
        base_url=base_url,
        via_proxy=via_proxy,
    )


def build_request(
    prompt: str,
    provider: ProviderConfig,
    call: CallConfig,
    api_key: Optional[str] = None,
) -> ProviderRequest:
    """Build the backend-specific request for a prompt.

    Args:
        prompt: The fully rendered prompt text.
        provider: The resolved provider configuration.
        call: Per-call overrides (endpoint URL, model).
        api_key: The resolved API key, if any.

    Returns:
        A ProviderRequest. Bedrock requests still need authentication.
    """
    base_url = resolve_base_url(provider, call)
    model = resolve_model(provider, call)
    fmt = wire_format(provider)

    if fmt == ApiFormat.OLLAMA:
        return build_ollama_request(prompt, base_url, model, api_key)
    if fmt == ApiFormat.BEDROCK:
        return build_bedrock_request(prompt, base_url, model)
    return build_openai_request(prompt, base_url, model, api_key)
