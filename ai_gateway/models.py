"""Request and response models for the AI provider gateway."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CallType(str, Enum):
    """What a call is for. Used for logging only, never for branching."""

    ANALYSIS = "analysis"
    RESPONSE = "response"
    FOLLOWUP = "followup"
    REFINEMENT = "refinement"
    HEALTH_CHECK = "health-check"
    MODELS = "models"


class CallConfig(BaseModel):
    """Per-call configuration supplied by the caller. Never persisted."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    service: Optional[str] = Field(default=None, description="Provider service key")
    api_key: Optional[str] = Field(default=None, alias="apiKey", repr=False)
    endpoint_url: Optional[str] = Field(
        default=None, alias="endpointUrl", description="Overrides the registry base URL"
    )
    model: Optional[str] = Field(default=None, description="Overrides the default model")
    region: Optional[str] = Field(default=None, description="AWS region (Bedrock only)")


class ModelInfo(BaseModel):
    """A model offered by a provider."""

    id: str
    name: str
    provider: Optional[str] = None


class CompleteRequest(BaseModel):
    """Incoming completion request to the HTTP facade."""

    prompt: str = Field(..., min_length=1, description="Fully rendered prompt")
    call_type: CallType = CallType.ANALYSIS
    email_content: Optional[str] = Field(
        default=None, description="Raw email body to preprocess into the prompt"
    )
    config: CallConfig


class CompleteResponse(BaseModel):
    """Successful completion envelope."""

    id: str
    text: str
    service: str
    model: str
    api_format: str
    used_fallback: bool = False
    truncation: Optional[Dict[str, Any]] = None
    html_conversion: Optional[Dict[str, Any]] = None


class PreprocessRequest(BaseModel):
    content: str


class ModelsResponse(BaseModel):
    service: str
    models: List[ModelInfo]


class HealthResponse(BaseModel):
    service: str
    healthy: bool


class ProviderSummary(BaseModel):
    """Public view of a registry entry; never includes keys."""

    service: str
    label: str
    api_format: str
    default_model: Optional[str] = None
    requires_api_key: bool


class ErrorDetail(BaseModel):
    """Structured error detail."""

    type: str
    message: str
    status_code: Optional[int] = None
    body_excerpt: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
