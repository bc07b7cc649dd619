"""
Tool registry.
Exposes every provider endpoint (and every custom tool chaining several
endpoints) as a named tool with a JSON-schema input description.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from logger import get_logger
from services.provider_factory import ExecutableEndpoint, ExecutableProvider, ProviderFactory
from services.provider_loader import ProviderLoader
from toonkit.exceptions import ErrorCode
from toonkit.models import ApiResponse, Parameter, ProviderSpec, ToolDefinition

logger = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[ApiResponse]]


@dataclass
class Tool:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler = field(repr=False)
    provider_id: str = ""

    def describe(self) -> dict[str, Any]:
        """Tool listing entry (name, description, inputSchema)."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def create_input_schema(parameters: list[Parameter]) -> dict[str, Any]:
    """Build a JSON schema object describing the given parameters."""
    properties: dict[str, Any] = {}
    required: list[str] = []

    for param in parameters:
        prop: dict[str, Any] = {
            "type": param.type,
            "description": param.description or "",
        }
        if param.enum:
            prop["enum"] = param.enum
        if param.default is not None:
            prop["default"] = param.default
        if param.example is not None:
            prop["example"] = param.example

        properties[param.name] = prop
        if param.required and param.name not in required:
            required.append(param.name)

    return {"type": "object", "properties": properties, "required": required}


def create_tool_description(endpoint: ExecutableEndpoint, provider: ExecutableProvider) -> str:
    definition = endpoint.definition
    lines = [f"[{provider.name}] {definition.name or definition.id}"]
    if definition.description:
        lines.append(definition.description)
    if definition.category:
        lines.append(f"Category: {definition.category}")
    if definition.school_types:
        lines.append(f"School Types: {', '.join(definition.school_types)}")
    return "\n".join(lines)


class ToolRegistry:
    """Registry of executable tools, keyed by tool name."""

    def __init__(self):
        self.tools: dict[str, Tool] = {}
        self.providers: dict[str, ExecutableProvider] = {}

    def register_provider(self, provider: ExecutableProvider, spec: ProviderSpec) -> None:
        """Register a provider's endpoint tools and its custom tools."""
        logger.info(f"Registering tools for provider: {provider.name}")
        self.providers[provider.id] = provider

        self._register_endpoint_tools(provider)
        for tool_def in spec.tools:
            self._register_custom_tool(provider, tool_def)

        logger.info(f"Registered {len(self.tools)} total tool(s)")

    def _register_endpoint_tools(self, provider: ExecutableProvider) -> None:
        for endpoint_id, endpoint in provider.endpoints.items():
            name = f"{provider.id}_{endpoint_id}"

            async def handler(args: dict[str, Any], endpoint_id: str = endpoint_id) -> ApiResponse:
                return await provider.execute_endpoint(endpoint_id, args)

            self.tools[name] = Tool(
                name=name,
                description=create_tool_description(endpoint, provider),
                input_schema=create_input_schema(endpoint.parameters),
                handler=handler,
                provider_id=provider.id,
            )
            logger.debug(f"  registered {name}")

    def _register_custom_tool(self, provider: ExecutableProvider, tool_def: ToolDefinition) -> None:
        name = f"{provider.id}_{tool_def.name}"

        input_schema = tool_def.input_schema
        if not input_schema:
            # Union of the chained endpoints' parameters
            params: dict[str, Parameter] = {}
            for endpoint_id in tool_def.uses_endpoints:
                endpoint = provider.get_endpoint(endpoint_id)
                if endpoint is None:
                    logger.warning(f"Custom tool {name} uses unknown endpoint: {endpoint_id}")
                    continue
                for param in endpoint.parameters:
                    params.setdefault(param.name, param)
            input_schema = create_input_schema(list(params.values()))

        async def handler(args: dict[str, Any]) -> ApiResponse:
            return await self.execute_custom_tool(provider, tool_def, args)

        self.tools[name] = Tool(
            name=name,
            description=tool_def.description,
            input_schema=input_schema,
            handler=handler,
            provider_id=provider.id,
        )
        logger.debug(f"  registered {name} (custom)")

    @staticmethod
    async def execute_custom_tool(
        provider: ExecutableProvider, tool_def: ToolDefinition, args: dict[str, Any]
    ) -> ApiResponse:
        """Run the tool's endpoints in order; the first failure is returned as-is."""
        results: dict[str, Any] = {}
        for endpoint_id in tool_def.uses_endpoints:
            result = await provider.execute_endpoint(endpoint_id, args)
            if not result.success:
                return result
            results[endpoint_id] = result.data
        return ApiResponse.ok(results)

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self.tools.values()]

    def get_tool(self, name: str) -> Tool | None:
        return self.tools.get(name)

    async def execute_tool(self, name: str, args: dict[str, Any] | None = None) -> ApiResponse:
        """Execute a tool by name. Unknown tools and handler crashes become failed responses."""
        tool = self.tools.get(name)
        if tool is None:
            return ApiResponse.fail(ErrorCode.TOOL_NOT_FOUND, f"Tool '{name}' not found")

        try:
            return await tool.handler(args or {})
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            return ApiResponse.fail(ErrorCode.TOOL_EXECUTION_ERROR, str(e))

    def get_tools_by_provider(self, provider_id: str) -> list[Tool]:
        return [tool for tool in self.tools.values() if tool.provider_id == provider_id]

    def get_stats(self) -> dict[str, Any]:
        return {
            "totalTools": len(self.tools),
            "totalProviders": len(self.providers),
            "toolsByProvider": {
                provider_id: len(self.get_tools_by_provider(provider_id)) for provider_id in self.providers
            },
        }


async def build_registry(providers_dir: str, factory: ProviderFactory) -> ToolRegistry:
    """Load every provider file in providers_dir and register its tools."""
    specs = await ProviderLoader(providers_dir).load_all_providers()
    registry = ToolRegistry()

    providers = factory.create_providers(specs)
    for provider, spec in zip(providers, specs):
        registry.register_provider(provider, spec)

    stats = registry.get_stats()
    logger.info(f"Provider initialization complete: {stats['totalProviders']} provider(s), {stats['totalTools']} tool(s)")
    return registry
