"""
Provider factory.
Turns a ProviderSpec into an executable provider whose endpoints validate
arguments, call the upstream API and cache successful responses.
"""

from typing import Any
from xml.sax.saxutils import escape

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from config import (
    CACHE_DEFAULT_TTL,
    CACHE_DIR,
    HTTP_TIMEOUT,
    RETRY_ATTEMPTS,
    RETRY_MAX_WAIT,
    RETRY_MIN_WAIT,
)
from logger import get_logger
from toonkit.cache import ResponseCache, build_cache_key
from toonkit.exceptions import (
    EndpointError,
    ErrorCode,
    ParameterValidationError,
    ProviderServiceError,
    UpstreamApiError,
    http_status_to_error_code,
    is_retryable,
)
from toonkit.models import ApiResponse, Endpoint, Parameter, ProviderMetadata, ProviderSpec
from toonkit.validator import ParameterValidator

logger = get_logger(__name__)


def convert_to_xml(params: dict[str, Any]) -> str:
    """Minimal XML request body: <request><key>value</key>...</request>."""
    parts = [f"<{key}>{escape(str(value))}</{key}>" for key, value in params.items()]
    return f"<request>{''.join(parts)}</request>"


class ExecutableEndpoint:
    """An endpoint bound to its provider, parameters and the shared factory resources."""

    def __init__(
        self,
        factory: "ProviderFactory",
        provider: ProviderMetadata,
        endpoint: Endpoint,
        parameters: list[Parameter],
        requires_year: bool,
        cache_ttl: int,
    ):
        self.factory = factory
        self.provider = provider
        self.definition = endpoint
        self.parameters = parameters
        self.requires_year = requires_year
        self.cache_ttl = cache_ttl

    @property
    def id(self) -> str:
        return self.definition.id

    async def execute(self, params: dict[str, Any]) -> ApiResponse:
        """
        Validate arguments, serve from cache or call the upstream API.

        Never raises: failures are returned as unsuccessful ApiResponse objects.
        """
        params = dict(params)

        try:
            ParameterValidator.validate_or_raise(self.parameters, params, {"endpointId": self.id})
        except ParameterValidationError as e:
            logger.warning(f"Parameter validation failed for {self.id}: {e.message}")
            return ApiResponse.fail(e.code, e.message)

        if self.definition.api_type:
            params["apiType"] = self.definition.api_type

        cache_key = build_cache_key(self.provider.id, self.id, params)
        cached = self.factory.cache.get(cache_key)
        if cached is not None:
            return ApiResponse.ok(cached)

        logger.info(f"API request: provider={self.provider.id} endpoint={self.id}")

        try:
            data = await self.factory.request(self.provider, params)
        except ProviderServiceError as e:
            logger.error(f"Endpoint {self.id} failed: [{e.code.value}] {e.message}")
            return ApiResponse.fail(e.code, e.user_message)
        except Exception as e:
            logger.error(f"Endpoint execution failed for {self.id}: {e}")
            return ApiResponse.fail(ErrorCode.ENDPOINT_EXECUTION_FAILED, str(e))

        if data is not None:
            self.factory.cache.set(cache_key, data, self.cache_ttl)
        return ApiResponse.ok(data)


class ExecutableProvider:
    """A provider and its executable endpoints, keyed by endpoint id."""

    def __init__(self, metadata: ProviderMetadata, endpoints: dict[str, ExecutableEndpoint]):
        self.metadata = metadata
        self.endpoints = endpoints

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def version(self) -> str:
        return self.metadata.version

    def get_endpoint(self, endpoint_id: str) -> ExecutableEndpoint | None:
        return self.endpoints.get(endpoint_id)

    async def execute_endpoint(self, endpoint_id: str, params: dict[str, Any]) -> ApiResponse:
        endpoint = self.endpoints.get(endpoint_id)
        if endpoint is None:
            error = EndpointError(
                f"Endpoint '{endpoint_id}' not found in provider '{self.name}'",
                ErrorCode.ENDPOINT_NOT_FOUND,
                {"providerId": self.id, "endpointId": endpoint_id},
            )
            return ApiResponse.fail(error.code, error.message)
        return await endpoint.execute(params)


class ProviderFactory:
    """
    Builds executable providers.

    Holds the resources shared by every endpoint: the response cache, the
    HTTP client and the retry policy.
    """

    def __init__(
        self,
        cache: ResponseCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_min_wait: float = RETRY_MIN_WAIT,
        retry_max_wait: float = RETRY_MAX_WAIT,
    ):
        self.cache = cache or ResponseCache(CACHE_DIR, CACHE_DEFAULT_TTL)
        self._client = http_client
        self._owns_client = http_client is None
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def create_provider(self, spec: ProviderSpec) -> ExecutableProvider:
        """Create an executable provider from its specification."""
        provider = spec.provider
        logger.info(f"Creating provider: {provider.id} ({provider.name} v{provider.version})")

        common = spec.common_parameters.all() if spec.common_parameters else []
        endpoints: dict[str, ExecutableEndpoint] = {}

        for group in spec.endpoint_groups.values():
            for endpoint in group.endpoints:
                endpoints[endpoint.id] = ExecutableEndpoint(
                    self,
                    provider,
                    endpoint,
                    [*common, *endpoint.parameters],
                    requires_year=group.requires_year or endpoint.requires_year,
                    cache_ttl=group.cache_ttl,
                )

        for endpoint in spec.endpoints:
            endpoints[endpoint.id] = ExecutableEndpoint(
                self,
                provider,
                endpoint,
                [*common, *endpoint.parameters],
                requires_year=endpoint.requires_year,
                cache_ttl=endpoint.cache_ttl,
            )

        logger.info(f"Provider created successfully: {provider.id} ({len(endpoints)} endpoints)")
        return ExecutableProvider(provider, endpoints)

    def create_providers(self, specs: list[ProviderSpec]) -> list[ExecutableProvider]:
        logger.info(f"Creating {len(specs)} provider(s)")
        return [self.create_provider(spec) for spec in specs]

    async def request(self, provider: ProviderMetadata, params: dict[str, Any]) -> Any:
        """
        Call the upstream API, retrying timeouts, rate limits and 5xx responses.

        Raises:
            UpstreamApiError: When the request ultimately fails
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_min_wait, max=self.retry_max_wait),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(provider, params)

    async def _send(self, provider: ProviderMetadata, params: dict[str, Any]) -> Any:
        content_type = "application/json" if provider.data_format == "JSON" else "application/xml"
        headers = {"Content-Type": content_type}

        auth = provider.authentication
        if auth is not None and auth.location == "header" and auth.parameter_name in params:
            params = dict(params)
            headers[auth.parameter_name] = str(params.pop(auth.parameter_name))

        client = self.get_client()
        try:
            if provider.method == "GET":
                query = {k: v for k, v in params.items() if v is not None}
                response = await client.get(provider.base_url, params=query, headers=headers)
            else:
                body = params if provider.data_format == "JSON" else None
                content = None if body is not None else convert_to_xml(params)
                response = await client.post(provider.base_url, json=body, content=content, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamApiError(
                f"Request to {provider.base_url} timed out", ErrorCode.API_TIMEOUT, {"url": provider.base_url}
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamApiError(str(e), ErrorCode.HTTP_ERROR, {"url": provider.base_url}) from e

        if response.is_error:
            raise UpstreamApiError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                http_status_to_error_code(response.status_code),
                {"url": str(response.url), "statusCode": response.status_code},
            )

        response_type = response.headers.get("content-type", "")
        if "application/json" in response_type:
            return response.json()
        if "application/xml" in response_type or "text/xml" in response_type:
            return {"xml": response.text}
        return response.text

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate_cache(self, pattern: str) -> int:
        return self.cache.delete_pattern(pattern)
