"""FastAPI application exposing the AI provider gateway over HTTP.

For hosts that cannot embed the gateway directly. Every endpoint is a thin
wrapper around Gateway; the error taxonomy maps onto HTTP statuses:

- configuration errors (unknown service, missing key, bad model family) -> 400
- classification blocks -> 403
- upstream failures (auth, not found, rate limit, 5xx, 405) -> 502
- connection errors and timeouts -> 504
- request validation -> 422
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ai_gateway.classification import detect_classification
from ai_gateway.config import GatewayConfig, load_config
from ai_gateway.errors import (
    ClassificationBlockedError,
    ConfigurationError,
    GatewayError,
    ProviderConnectionError,
)
from ai_gateway.gateway import Gateway
from ai_gateway.models import (
    CallConfig,
    CompleteRequest,
    CompleteResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    ModelsResponse,
    PreprocessRequest,
    ProviderSummary,
)
from ai_gateway.preprocess import analyze_html_content, prepare_email_content
from ai_gateway.telemetry import setup_logging

CONFIG_PATH = os.getenv("AI_GATEWAY_CONFIG", "config/ai-providers.json")

_config: Optional[GatewayConfig] = None
_gateway: Optional[Gateway] = None


def get_config() -> GatewayConfig:
    """Return the loaded provider registry (lazy-init)."""
    global _config
    if _config is None:
        _config = load_config(CONFIG_PATH)
    return _config


def get_gateway() -> Gateway:
    """Return the gateway (lazy-init from config)."""
    global _gateway
    if _gateway is None:
        _gateway = Gateway.from_config(get_config())
    return _gateway


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Load the registry and set up logging on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file)
    get_gateway()
    yield


app = FastAPI(title="AI Provider Gateway", version="1.0.0", lifespan=lifespan)


def _error_response(
    status: int,
    error_type: str,
    message: str,
    upstream_status: Optional[int] = None,
    body_excerpt: Optional[str] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(
        error=ErrorDetail(
            type=error_type,
            message=message,
            status_code=upstream_status,
            body_excerpt=body_excerpt,
        )
    )
    return JSONResponse(status_code=status, content=body.model_dump())


def _status_for(exc: GatewayError) -> int:
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, ClassificationBlockedError):
        return 403
    if isinstance(exc, ProviderConnectionError):
        return 504
    return 502


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render any gateway failure in the error envelope."""
    return _error_response(
        _status_for(exc),
        exc.error_type,
        exc.detail,
        upstream_status=exc.status_code,
        body_excerpt=exc.body_excerpt,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's validation errors into our error envelope format."""
    return _error_response(
        422,
        "validation_error",
        "Request validation failed: {}".format(exc.errors()),
    )


@app.post("/v1/complete", response_model=None)
async def complete(request: CompleteRequest) -> JSONResponse:
    """Dispatch a prompt to the requested provider."""
    result = await get_gateway().complete(
        request.prompt,
        request.config,
        call_type=request.call_type,
        email_content=request.email_content,
    )

    response = CompleteResponse(
        id=result.request_id,
        text=result.text,
        service=result.service,
        model=result.model,
        api_format=result.api_format.value,
        used_fallback=result.used_fallback,
        truncation=asdict(result.truncation) if result.truncation else None,
        html_conversion=asdict(result.html_conversion) if result.html_conversion else None,
    )
    return JSONResponse(status_code=200, content=response.model_dump())


@app.post("/v1/preprocess", response_model=None)
async def preprocess(request: PreprocessRequest) -> JSONResponse:
    """Run the content-preparation pipeline without calling a provider."""
    prepared = prepare_email_content(request.content, get_gateway().limits)
    content = {
        "content": prepared.content,
        "classification": detect_classification(request.content),
        "html_analysis": asdict(analyze_html_content(request.content)),
        "conversion": asdict(prepared.conversion),
        "length": asdict(prepared.length),
        "truncation": asdict(prepared.truncation),
        "notices": prepared.notices,
    }
    return JSONResponse(status_code=200, content=content)


@app.post("/v1/models", response_model=None)
async def models(call: CallConfig) -> JSONResponse:
    """List the models offered by a provider."""
    gateway = get_gateway()
    provider = gateway.resolve_provider(call.service)
    found = await gateway.list_models(call)
    response = ModelsResponse(service=provider.service_key, models=found)
    return JSONResponse(status_code=200, content=response.model_dump())


@app.post("/v1/health", response_model=None)
async def health(call: CallConfig) -> JSONResponse:
    """Check that a provider answers a minimal prompt."""
    gateway = get_gateway()
    provider = gateway.resolve_provider(call.service)
    healthy = await gateway.test_connection(call)
    response = HealthResponse(service=provider.service_key, healthy=healthy)
    return JSONResponse(status_code=200, content=response.model_dump())


@app.get("/v1/providers", response_model=None)
async def providers() -> JSONResponse:
    """List configured providers. Keys are never included."""
    summaries = [
        ProviderSummary(
            service=p.service_key,
            label=p.display_name,
            api_format=p.api_format.value,
            default_model=p.default_model,
            requires_api_key=p.requires_api_key,
        ).model_dump()
        for p in get_gateway().providers.values()
    ]
    return JSONResponse(status_code=200, content={"providers": summaries})
