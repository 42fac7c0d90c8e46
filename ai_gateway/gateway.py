"""Gateway dispatcher: one logical completion request, any backend.

A call walks a fixed sequence of steps:

1. ResolveProvider  - look the service up in the registry (fatal on miss)
2. Preprocess       - HTML conversion, truncation, classification check
3. BuildRequest     - backend-specific endpoint, headers and body
4. SignIfBedrock    - SigV4 or bearer authentication for Bedrock
5. Execute          - one HTTP call, captured as an explicit HttpOutcome
6. FallbackRetry    - Ollama only: a 405 from /api/chat retries /api/generate once
7. ExtractResponse  - normalize the backend JSON into text

Any step may end the call with a GatewayError. Nothing is retried except
step 6, and the gateway keeps no per-call state on the instance: the
truncation and HTML-conversion diagnostics travel on the returned
CompletionResult.
"""

import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Mapping, Optional, Union

import httpx

from ai_gateway.builder import (
    ProviderRequest,
    build_ollama_generate_fallback,
    build_request,
    resolve_base_url,
    wire_format,
)
from ai_gateway.classification import check_classification_blocking
from ai_gateway.config import (
    DEFAULT_REGION,
    ApiFormat,
    GatewayConfig,
    PromptLimits,
    ProviderConfig,
)
from ai_gateway.credentials import resolve_bedrock_auth
from ai_gateway.errors import (
    ClassificationBlockedError,
    ConfigurationError,
    GatewayError,
    MissingApiKeyError,
    ProtocolMismatchError,
    ProviderConnectionError,
    body_excerpt,
)
from ai_gateway.extractor import extract_response_text
from ai_gateway.models import CallConfig, CallType, ModelInfo
from ai_gateway.preprocess import (
    ConversionResult,
    PreparedContent,
    TruncationResult,
    convert_html_to_text,
    prepare_email_content,
)
from ai_gateway.provider import HttpOutcome, send, serialize_body
from ai_gateway.router import resolve_provider
from ai_gateway.sigv4 import sign_request
from ai_gateway.telemetry import log_call, logger, mask_secret

HEALTH_CHECK_PROMPT = "Hello, respond with 'OK'"

EMAIL_CONTENT_PLACEHOLDER = "{{emailContent}}"
HTML_NOTICE_PLACEHOLDER = "{{htmlConversionNotice}}"
TRUNCATION_NOTICE_PLACEHOLDER = "{{truncationNotice}}"

STATIC_BEDROCK_MODELS = [
    ModelInfo(id="anthropic.claude-3-5-sonnet-20241022-v2:0", name="Claude 3.5 Sonnet v2", provider="Anthropic"),
    ModelInfo(id="anthropic.claude-3-sonnet-20240229-v1:0", name="Claude 3 Sonnet", provider="Anthropic"),
    ModelInfo(id="anthropic.claude-3-haiku-20240307-v1:0", name="Claude 3 Haiku", provider="Anthropic"),
    ModelInfo(id="anthropic.claude-instant-v1", name="Claude Instant", provider="Anthropic"),
    ModelInfo(id="amazon.titan-text-express-v1", name="Titan Text Express", provider="Amazon"),
    ModelInfo(id="amazon.titan-text-lite-v1", name="Titan Text Lite", provider="Amazon"),
    ModelInfo(id="ai21.j2-ultra-v1", name="Jurassic-2 Ultra", provider="AI21 Labs"),
    ModelInfo(id="ai21.j2-mid-v1", name="Jurassic-2 Mid", provider="AI21 Labs"),
    ModelInfo(id="cohere.command-text-v14", name="Command", provider="Cohere"),
    ModelInfo(id="cohere.command-light-text-v14", name="Command Light", provider="Cohere"),
]


@dataclass
class CompletionResult:
    """Canonical outcome of a gateway call."""

    text: str
    service: str
    model: str
    api_format: ApiFormat
    request_id: str
    used_fallback: bool = False
    truncation: Optional[TruncationResult] = None
    html_conversion: Optional[ConversionResult] = None


def render_prompt(prompt: str, prepared: PreparedContent) -> str:
    """Place prepared email content and its notices into a prompt.

    Only the three gateway placeholders are substituted. A prompt without
    the content placeholder gets the content appended after a blank line.
    """
    rendered = prompt.replace(HTML_NOTICE_PLACEHOLDER, prepared.html_conversion_notice)
    rendered = rendered.replace(TRUNCATION_NOTICE_PLACEHOLDER, prepared.truncation_notice)

    if EMAIL_CONTENT_PLACEHOLDER in rendered:
        return rendered.replace(EMAIL_CONTENT_PLACEHOLDER, prepared.content)

    parts = [rendered.rstrip()]
    parts.extend(prepared.notices)
    parts.append(prepared.content)
    return "\n\n".join(p for p in parts if p)


def _outcome_label(exc: GatewayError) -> str:
    if isinstance(exc, ClassificationBlockedError):
        return "blocked"
    if isinstance(exc, ConfigurationError):
        return "configuration_error"
    if isinstance(exc, ProviderConnectionError):
        return "connection_error"
    return "provider_error"


def _call_type_tag(call_type: Union[CallType, str]) -> str:
    """Logging tag for a call; unknown tags are logged as given."""
    if isinstance(call_type, CallType):
        return call_type.value
    return str(call_type)


def _diagnostics(prepared: Optional[PreparedContent]) -> Optional[Dict[str, object]]:
    if prepared is None:
        return None
    return {
        "html_converted": prepared.conversion.was_converted,
        "truncated": prepared.truncation.was_truncated,
        "original_length": prepared.conversion.original_length,
        "final_length": len(prepared.content),
    }


class Gateway:
    """Dispatches completion requests to the configured AI providers.

    Instances hold only read-only configuration, so one gateway can serve
    concurrent calls.
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        limits: Optional[PromptLimits] = None,
        timeout: float = 60.0,
        default_service: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._providers: Dict[str, ProviderConfig] = dict(providers)
        self.limits = limits or PromptLimits()
        self.timeout = timeout
        self.default_service = default_service
        self._client = client

    @classmethod
    def from_config(
        cls, config: GatewayConfig, client: Optional[httpx.AsyncClient] = None
    ) -> "Gateway":
        return cls(
            providers=config.providers,
            limits=config.limits,
            timeout=config.timeout_seconds,
            default_service=config.default_service,
            client=client,
        )

    @property
    def providers(self) -> Dict[str, ProviderConfig]:
        return dict(self._providers)

    def update_providers(self, providers: Mapping[str, ProviderConfig]) -> None:
        """Replace the provider registry wholesale."""
        self._providers = dict(providers)

    def resolve_provider(self, service: Optional[str]) -> ProviderConfig:
        return resolve_provider(self._providers, service, self.default_service)

    def resolve_api_key(self, provider: ProviderConfig, call: CallConfig) -> Optional[str]:
        """Caller-supplied key first, then the provider's environment variable.

        Raises:
            MissingApiKeyError: If the provider requires a key and none is found.
        """
        key = (call.api_key or "").strip() or provider.env_api_key
        if not key and provider.requires_api_key:
            raise MissingApiKeyError(
                "An API key is required for '{}'. Add your API key in the "
                "settings for this service.".format(provider.display_name),
                service=provider.service_key,
            )
        return key or None

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def _check_blocking(self, text: str, provider: ProviderConfig) -> None:
        if not provider.blocked_classifications:
            return
        check = check_classification_blocking(convert_html_to_text(text), provider)
        if check.blocked:
            raise ClassificationBlockedError(
                "AI analysis blocked: {}".format(check.reason),
                service=provider.service_key,
            )

    def _authorize_bedrock(
        self,
        request: ProviderRequest,
        api_key: Optional[str],
        region: str,
        payload: str,
    ) -> Dict[str, str]:
        auth = resolve_bedrock_auth(api_key, proxy=request.via_proxy)
        if auth.uses_bearer:
            logger.debug("Bedrock bearer authentication (%s)", mask_secret(auth.bearer_token))
            headers = dict(request.headers)
            headers["Authorization"] = "Bearer {}".format(auth.bearer_token)
            return headers

        logger.debug(
            "Bedrock SigV4 authentication (access key %s, region %s)",
            mask_secret(auth.credentials.access_key_id),
            region,
        )
        signed = sign_request("POST", request.endpoint, payload, auth.credentials, region)
        return signed.headers

    async def complete(
        self,
        prompt: str,
        call: CallConfig,
        call_type: Union[CallType, str] = CallType.ANALYSIS,
        email_content: Optional[str] = None,
    ) -> CompletionResult:
        """Send a prompt to the caller's chosen provider and return its text.

        Args:
            prompt: The fully rendered prompt. When ``email_content`` is given
                it may contain ``{{emailContent}}``, ``{{htmlConversionNotice}}``
                and ``{{truncationNotice}}`` placeholders.
            call: Per-call configuration (service, key, overrides).
            call_type: Logging tag; never changes behaviour.
            email_content: Raw email body to preprocess into the prompt.

        Returns:
            A CompletionResult whose ``text`` is always a string.

        Raises:
            GatewayError: A subclass describing the failure; see errors.py.
        """
        request_id = "gw-{}".format(uuid.uuid4().hex[:12])
        call_type_value = _call_type_tag(call_type)
        started = time.monotonic()
        provider: Optional[ProviderConfig] = None
        request: Optional[ProviderRequest] = None
        prepared: Optional[PreparedContent] = None
        outcome: Optional[HttpOutcome] = None
        used_fallback = False

        try:
            # ResolveProvider
            provider = self.resolve_provider(call.service)

            # Preprocess
            if email_content is not None:
                prepared = prepare_email_content(email_content, self.limits)
                self._check_blocking(email_content, provider)
                prompt = render_prompt(prompt, prepared)
            else:
                self._check_blocking(prompt, provider)

            # BuildRequest
            api_key = self.resolve_api_key(provider, call)
            request = build_request(prompt, provider, call, api_key)
            payload = serialize_body(request.body)

            # SignIfBedrock
            if request.api_format == ApiFormat.BEDROCK:
                region = call.region or provider.region or DEFAULT_REGION
                request.headers = self._authorize_bedrock(request, api_key, region, payload)

            async with self._http() as client:
                # Execute
                outcome = await send(
                    client, "POST", request.endpoint, request.headers, payload,
                    service=provider.service_key,
                )

                # FallbackRetry
                if request.api_format == ApiFormat.OLLAMA and outcome.status_code == 405:
                    fallback = build_ollama_generate_fallback(request)
                    logger.warning(
                        "Ollama %s returned 405, retrying with %s",
                        request.endpoint,
                        fallback.endpoint,
                    )
                    used_fallback = True
                    request = fallback
                    outcome = await send(
                        client, "POST", fallback.endpoint, fallback.headers,
                        serialize_body(fallback.body), service=provider.service_key,
                    )

            if not outcome.ok:
                if used_fallback and outcome.status_code == 405:
                    excerpt = body_excerpt(outcome.text)
                    raise ProtocolMismatchError(
                        "Ollama rejected both /api/chat and /api/generate (HTTP 405)."
                        + (" ({})".format(excerpt) if excerpt else ""),
                        status_code=405,
                        body_excerpt=excerpt,
                        service=provider.service_key,
                    )
                raise outcome.to_error(provider.service_key)

            # ExtractResponse
            text = extract_response_text(outcome.json(), request.api_format, request.family)

        except GatewayError as exc:
            log_call(
                request_id=request_id,
                call_type=call_type_value,
                service=provider.service_key if provider else call.service,
                api_format=provider.api_format.value if provider else None,
                model=request.model if request else None,
                outcome=_outcome_label(exc),
                status=exc.status_code,
                error=exc.detail,
                duration_ms=int((time.monotonic() - started) * 1000),
                diagnostics=_diagnostics(prepared),
            )
            raise

        log_call(
            request_id=request_id,
            call_type=call_type_value,
            service=provider.service_key,
            api_format=provider.api_format.value,
            model=request.model,
            outcome="fallback_success" if used_fallback else "success",
            status=outcome.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            diagnostics=_diagnostics(prepared),
        )

        return CompletionResult(
            text=text,
            service=provider.service_key,
            model=request.model,
            api_format=request.api_format,
            request_id=request_id,
            used_fallback=used_fallback,
            truncation=prepared.truncation if prepared else None,
            html_conversion=prepared.conversion if prepared else None,
        )

    async def test_connection(self, call: CallConfig) -> bool:
        """Return True if the service answers a minimal prompt."""
        try:
            await self.complete(HEALTH_CHECK_PROMPT, call, CallType.HEALTH_CHECK)
        except GatewayError as exc:
            logger.warning("Connection test failed for %s: %s", call.service, exc.detail)
            return False
        return True

    async def list_models(self, call: CallConfig) -> List[ModelInfo]:
        """List the models a provider offers.

        Raises:
            GatewayError: For Ollama and OpenAI-compatible providers when the
                listing fails. Bedrock falls back to a static catalogue.
        """
        request_id = "gw-{}".format(uuid.uuid4().hex[:12])
        started = time.monotonic()
        provider: Optional[ProviderConfig] = None

        try:
            provider = self.resolve_provider(call.service)
            models = await self._fetch_models(provider, call)
        except GatewayError as exc:
            log_call(
                request_id=request_id,
                call_type=CallType.MODELS.value,
                service=provider.service_key if provider else call.service,
                api_format=provider.api_format.value if provider else None,
                outcome=_outcome_label(exc),
                status=exc.status_code,
                error=exc.detail,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        log_call(
            request_id=request_id,
            call_type=CallType.MODELS.value,
            service=provider.service_key,
            api_format=provider.api_format.value,
            outcome="success",
            duration_ms=int((time.monotonic() - started) * 1000),
            diagnostics={"model_count": len(models)},
        )
        return models

    async def _fetch_models(self, provider: ProviderConfig, call: CallConfig) -> List[ModelInfo]:
        fmt = wire_format(provider)

        if fmt == ApiFormat.BEDROCK:
            return await self._list_bedrock_models(provider, call)

        base_url = resolve_base_url(provider, call)
        headers: Dict[str, str] = {}
        if fmt == ApiFormat.OLLAMA:
            url = "{}/api/tags".format(base_url)
        else:
            url = "{}/models".format(base_url)
            api_key = (call.api_key or "").strip() or provider.env_api_key
            if api_key:
                headers["Authorization"] = "Bearer {}".format(api_key)

        async with self._http() as client:
            outcome = await send(client, "GET", url, headers, service=provider.service_key)

        if not outcome.ok:
            raise outcome.to_error(provider.service_key)

        data = outcome.json()
        if not isinstance(data, dict):
            return []

        if fmt == ApiFormat.OLLAMA:
            names = [m.get("name") for m in data.get("models") or [] if isinstance(m, dict)]
        else:
            names = [m.get("id") for m in data.get("data") or [] if isinstance(m, dict)]
        return [ModelInfo(id=n, name=n, provider=provider.display_name) for n in names if n]

    async def _list_bedrock_models(
        self, provider: ProviderConfig, call: CallConfig
    ) -> List[ModelInfo]:
        region = call.region or provider.region or DEFAULT_REGION
        api_key = (call.api_key or "").strip() or provider.env_api_key

        try:
            auth = resolve_bedrock_auth(api_key)
        except GatewayError as exc:
            logger.warning("Bedrock model listing unavailable (%s); using static list", exc.detail)
            return list(STATIC_BEDROCK_MODELS)

        if auth.credentials is None:
            logger.warning("Bedrock model listing needs AWS credentials; using static list")
            return list(STATIC_BEDROCK_MODELS)

        url = "https://bedrock.{}.amazonaws.com/foundation-models".format(region)
        signed = sign_request("GET", url, "", auth.credentials, region)

        try:
            async with self._http() as client:
                outcome = await send(client, "GET", url, signed.headers, service=provider.service_key)
        except ProviderConnectionError as exc:
            logger.warning("Bedrock model listing failed (%s); using static list", exc.detail)
            return list(STATIC_BEDROCK_MODELS)

        if not outcome.ok:
            logger.warning(
                "Bedrock model listing returned HTTP %s; using static list",
                outcome.status_code,
            )
            return list(STATIC_BEDROCK_MODELS)

        data = outcome.json()
        summaries = data.get("modelSummaries") if isinstance(data, dict) else None
        models = []
        for summary in summaries or []:
            if not isinstance(summary, dict):
                continue
            status = (summary.get("modelLifecycle") or {}).get("status")
            if status != "ACTIVE":
                continue
            if "TEXT" not in (summary.get("outputModalities") or []) and (
                "ON_DEMAND" not in (summary.get("inferenceTypesSupported") or [])
            ):
                continue
            model_id = summary.get("modelId")
            if not model_id:
                continue
            models.append(
                ModelInfo(
                    id=model_id,
                    name=summary.get("modelName") or model_id,
                    provider=summary.get("providerName") or model_id.split(".")[0],
                )
            )
        return sorted(models, key=lambda m: m.name)
