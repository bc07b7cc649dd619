"""
Tests for the tool registry.
"""

import httpx
import pytest

from services.provider_factory import ProviderFactory
from services.tool_registry import ToolRegistry, build_registry, create_input_schema
from toonkit.cache import ResponseCache
from toonkit.models import (
    CommonParameters,
    Endpoint,
    Parameter,
    ProviderMetadata,
    ProviderSpec,
    ToolDefinition,
)


def handler(request: httpx.Request) -> httpx.Response:
    api_type = request.url.params.get("apiType")
    if api_type == "99":
        return httpx.Response(404)
    return httpx.Response(200, json={"apiType": api_type})


@pytest.fixture
def factory(tmp_path):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProviderFactory(cache=ResponseCache(tmp_path / "cache"), http_client=client, retry_attempts=1)


@pytest.fixture
def spec():
    return ProviderSpec(
        provider=ProviderMetadata(id="edu", name="Edu API", base_url="https://api.example.org"),
        common_parameters=CommonParameters(
            required=[Parameter(name="apiKey", type="string", required=True, description="API key")],
        ),
        endpoints=[
            Endpoint(
                id="class-days",
                api_type="08",
                name="Class days",
                category="academics",
                school_types=["02", "03"],
                parameters=[Parameter(name="semester", type="string", enum=["1", "2"], default="1")],
            ),
            Endpoint(id="enrollment", api_type="09"),
            Endpoint(id="broken", api_type="99"),
        ],
        tools=[
            ToolDefinition(name="overview", description="Overview", uses_endpoints=["class-days", "enrollment"]),
            ToolDefinition(name="partial", description="Fails midway", uses_endpoints=["class-days", "broken"]),
        ],
    )


@pytest.fixture
def registry(factory, spec):
    registry = ToolRegistry()
    registry.register_provider(factory.create_provider(spec), spec)
    return registry


def test_registered_tool_names(registry):
    assert [t["name"] for t in registry.list_tools()] == [
        "edu_class-days",
        "edu_enrollment",
        "edu_broken",
        "edu_overview",
        "edu_partial",
    ]


def test_endpoint_tool_description_and_schema(registry):
    tool = registry.get_tool("edu_class-days")

    assert tool.description == "[Edu API] Class days\nCategory: academics\nSchool Types: 02, 03"
    assert tool.input_schema == {
        "type": "object",
        "properties": {
            "apiKey": {"type": "string", "description": "API key"},
            "semester": {"type": "string", "description": "", "enum": ["1", "2"], "default": "1"},
        },
        "required": ["apiKey"],
    }
    assert registry.get_tool("edu_enrollment").description == "[Edu API] enrollment"


def test_custom_tool_schema_merges_endpoint_parameters(registry):
    schema = registry.get_tool("edu_overview").input_schema
    assert set(schema["properties"]) == {"apiKey", "semester"}
    assert schema["required"] == ["apiKey"]


@pytest.mark.asyncio
async def test_execute_endpoint_tool(registry):
    result = await registry.execute_tool("edu_class-days", {"apiKey": "k"})
    assert result.success
    assert result.data == {"apiType": "08"}


@pytest.mark.asyncio
async def test_execute_custom_tool(registry):
    result = await registry.execute_tool("edu_overview", {"apiKey": "k"})
    assert result.success
    assert result.data == {"class-days": {"apiType": "08"}, "enrollment": {"apiType": "09"}}


@pytest.mark.asyncio
async def test_custom_tool_stops_at_first_failure(registry):
    result = await registry.execute_tool("edu_partial", {"apiKey": "k"})
    assert not result.success
    assert result.error.code == "HTTP_CLIENT_ERROR"


@pytest.mark.asyncio
async def test_unknown_tool(registry):
    result = await registry.execute_tool("edu_missing", {})
    assert not result.success
    assert result.error.code == "TOOL_NOT_FOUND"


@pytest.mark.asyncio
async def test_handler_crash_becomes_execution_error(registry):
    async def boom(args):
        raise RuntimeError("kaboom")

    registry.get_tool("edu_enrollment").handler = boom
    result = await registry.execute_tool("edu_enrollment", {"apiKey": "k"})
    assert result.error.code == "TOOL_EXECUTION_ERROR"
    assert result.error.message == "kaboom"


def test_stats(registry):
    assert registry.get_stats() == {"totalTools": 5, "totalProviders": 1, "toolsByProvider": {"edu": 5}}
    assert len(registry.get_tools_by_provider("edu")) == 5
    assert registry.get_tools_by_provider("other") == []


def test_create_input_schema_empty():
    assert create_input_schema([]) == {"type": "object", "properties": {}, "required": []}


@pytest.mark.asyncio
async def test_build_registry_from_directory(tmp_path, factory):
    providers = tmp_path / "providers"
    providers.mkdir()
    (providers / "edu.toon").write_text(
        "provider{id,name,baseUrl}:\n"
        "  edu,Edu API,https://api.example.org\n"
        "endpoints[2]{id,apiType}:\n"
        "  class-days,08\n"
        "  enrollment,09\n",
        encoding="utf-8",
    )

    registry = await build_registry(str(providers), factory)
    assert [t["name"] for t in registry.list_tools()] == ["edu_class-days", "edu_enrollment"]

    result = await registry.execute_tool("edu_class-days", {})
    assert result.data == {"apiType": "08"}
