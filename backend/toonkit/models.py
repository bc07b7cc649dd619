"""
Pydantic models for provider specifications, tools and API responses.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ALIASED = ConfigDict(populate_by_name=True)


class Parameter(BaseModel):
    """A single request parameter accepted by an endpoint."""

    name: str = Field(..., description="Parameter name sent upstream")
    type: Literal["string", "number", "boolean"] = Field("string", description="Value type")
    required: bool = Field(False, description="Whether callers must supply it")
    description: str | None = Field(None, description="Human-readable description")
    enum: list[str] | None = Field(None, description="Allowed values")
    default: Any = Field(None, description="Default value")
    example: Any = Field(None, description="Example value")


class Authentication(BaseModel):
    """How the upstream API expects credentials."""

    model_config = _ALIASED

    type: Literal["apiKey", "oauth2", "basic"] = Field(..., description="Authentication scheme")
    parameter_name: str = Field(..., alias="parameterName", description="Credential parameter name")
    location: Literal["query", "header"] = Field("query", description="Where the credential is sent")


class ProviderMetadata(BaseModel):
    """Identity and transport settings of an API provider."""

    model_config = _ALIASED

    id: str = Field(..., description="Provider identifier, used as tool name prefix")
    name: str = Field(..., description="Display name")
    version: str = Field("1.0.0", description="Provider definition version")
    base_url: str = Field("", alias="baseUrl", description="Upstream base URL")
    method: Literal["GET", "POST"] = Field("GET", description="HTTP method")
    data_format: Literal["JSON", "XML"] = Field("JSON", alias="dataFormat", description="Request/response format")
    authentication: Authentication | None = Field(None, description="Credential settings")

    @field_validator("method", "data_format", mode="before")
    @classmethod
    def upper_case(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class Endpoint(BaseModel):
    """One callable endpoint of a provider."""

    model_config = _ALIASED

    id: str = Field(..., description="Endpoint identifier")
    api_type: str | None = Field(None, alias="apiType", description="Value injected as the apiType parameter")
    name: str | None = Field(None, description="Display name")
    category: str | None = Field(None, description="Category label")
    description: str | None = Field(None, description="Endpoint description")
    parameters: list[Parameter] = Field(default_factory=list, description="Endpoint-specific parameters")
    requires_year: bool = Field(False, alias="requiresYear", description="Whether a year parameter is needed")
    cache_ttl: int = Field(3600, alias="cacheTtl", description="Response cache TTL in seconds")
    school_types: list[str] = Field(default_factory=list, alias="schoolTypes", description="Applicable school types")


class EndpointGroup(BaseModel):
    """Endpoints sharing group-level settings."""

    model_config = _ALIASED

    description: str = Field("", description="Group description")
    requires_year: bool = Field(False, alias="requiresYear")
    cache_ttl: int = Field(3600, alias="cacheTtl")
    endpoints: list[Endpoint] = Field(default_factory=list)


class CommonParameters(BaseModel):
    """Parameters shared by every endpoint of a provider."""

    model_config = _ALIASED

    required: list[Parameter] = Field(default_factory=list)
    optional: list[Parameter] = Field(default_factory=list)
    time_series: list[Parameter] = Field(default_factory=list, alias="timeSeries")

    def all(self) -> list[Parameter]:
        return [*self.required, *self.optional, *self.time_series]


class ToolDefinition(BaseModel):
    """A custom tool that chains several endpoints."""

    model_config = _ALIASED

    name: str = Field(..., description="Tool name (prefixed with the provider id)")
    description: str = Field("", description="Tool description")
    category: str = Field("general", description="Category label")
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    uses_endpoints: list[str] = Field(default_factory=list, alias="usesEndpoints")


class ProviderSpec(BaseModel):
    """Everything parsed from one provider .toon file."""

    model_config = _ALIASED

    provider: ProviderMetadata
    common_parameters: CommonParameters | None = Field(None, alias="commonParameters")
    endpoint_groups: dict[str, EndpointGroup] = Field(default_factory=dict, alias="endpointGroups")
    endpoints: list[Endpoint] = Field(default_factory=list)
    tools: list[ToolDefinition] = Field(default_factory=list)


class ApiErrorDetail(BaseModel):
    code: str
    message: str


class ApiResponse(BaseModel):
    """Result of executing an endpoint or tool. Never raised, always returned."""

    success: bool
    data: Any = None
    error: ApiErrorDetail | None = None

    @classmethod
    def ok(cls, data: Any) -> "ApiResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str) -> "ApiResponse":
        # ErrorCode members are str enums; store the plain value
        return cls(success=False, error=ApiErrorDetail(code=getattr(code, "value", code), message=message))
