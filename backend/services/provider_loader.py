"""
Provider loader.
Scans a providers directory for .toon files and converts each parsed
document into a ProviderSpec.

Provider file layout:

    provider{id,name,version,baseUrl,method,dataFormat}:
      schoolinfo,School Info API,1.0.0,https://example.org/api,GET,JSON

    authentication{type,parameterName,location}:
      apiKey,apiKey,query

    commonParameters.required{name,type,description}:
      apiKey,string,API key

    endpointGroups{groupId,description,requiresYear,cacheTtl}:
      student,Student statistics,true,86400

    endpoints.student{id,apiType,name,category}:
      class-days,08,Class days,academics

    parameters.class-days{name,type,required,enum}:
      semester,string,false,1|2

    tools{name,description,category,usesEndpoints}:
      overview,Student overview,summary,"class-days"
"""

import asyncio
from pathlib import Path
from typing import Any

import aiofiles
from pydantic import ValidationError

from logger import get_logger
from toonkit.exceptions import ErrorCode, ProviderLoadError, ToonParseError
from toonkit.models import (
    CommonParameters,
    Endpoint,
    EndpointGroup,
    Parameter,
    ProviderMetadata,
    ProviderSpec,
    ToolDefinition,
)
from toonkit.toon import ToonParser, ToonParserOptions

logger = get_logger(__name__)

PROVIDER_FILE_SUFFIX = ".toon"


def _split_list(value: Any, separator: str) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in str(value).split(separator) if item.strip()]


def _clean_row(row: dict[str, Any]) -> dict[str, Any]:
    """Drop unset cells and unwrap explicitly quoted literals."""
    cleaned = {}
    for key, value in row.items():
        if value is None or value == "" or value == "null":
            continue
        if isinstance(value, str) and len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1].replace('\\"', '"')
        cleaned[key] = value
    return cleaned


class ProviderLoader:
    """Loads every provider definition found in a directory."""

    def __init__(self, providers_dir: str | Path = "./providers"):
        self.providers_dir = Path(providers_dir)
        # Raw strings: pydantic does the typing, so values like "08" keep their zeros
        self.parser = ToonParser(ToonParserOptions(auto_convert=False, nested_paths=True))

    def find_provider_files(self) -> list[Path]:
        """Return the sorted .toon files of the providers directory."""
        if not self.providers_dir.is_dir():
            logger.warning(f"Providers directory not found: {self.providers_dir}")
            return []

        return sorted(
            path for path in self.providers_dir.iterdir()
            if path.is_file() and path.suffix == PROVIDER_FILE_SUFFIX
        )

    async def load_provider_file(self, file_path: str | Path) -> ProviderSpec:
        """
        Load and convert a single provider file.

        Raises:
            ProviderLoadError: If the file cannot be read, parsed or converted
        """
        path = Path(file_path)
        logger.info(f"Loading provider: {path.name}")

        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise ProviderLoadError(
                f"Cannot read provider file {path.name}: {e}", context={"file": str(path)}
            ) from e

        try:
            parsed = self.parser.parse(content)
        except ToonParseError as e:
            raise ProviderLoadError(
                f"Invalid TOON in {path.name}: {e}",
                ErrorCode.TOON_PARSE_ERROR,
                {"file": str(path), **e.to_dict()},
            ) from e

        return self.convert_to_provider_spec(parsed, path.stem, source=path.name)

    async def load_all_providers(self) -> list[ProviderSpec]:
        """Load every provider file concurrently, in file name order."""
        files = self.find_provider_files()

        if not files:
            logger.warning(f"No provider files found in: {self.providers_dir}")
            return []

        logger.info(f"Found {len(files)} provider(s)")
        return list(await asyncio.gather(*(self.load_provider_file(f) for f in files)))

    @staticmethod
    def _table(parsed: dict[str, Any], name: str, source: str) -> list[dict[str, Any]]:
        table = parsed.get(name)
        if table is None:
            return []
        if not isinstance(table, list):
            raise ProviderLoadError(
                f"'{name}' in {source} must be a single table, not a group of tables",
                context={"file": source, "table": name},
            )
        return [_clean_row(row) for row in table]

    @staticmethod
    def _group(parsed: dict[str, Any], name: str, source: str) -> dict[str, list[dict[str, Any]]]:
        group = parsed.get(name)
        if group is None:
            return {}
        if not isinstance(group, dict):
            raise ProviderLoadError(
                f"'{name}' in {source} must be a group of tables ({name}.<key>)",
                context={"file": source, "table": name},
            )
        return {key: [_clean_row(row) for row in rows] for key, rows in group.items() if isinstance(rows, list)}

    @staticmethod
    def convert_parameters(rows: list[dict[str, Any]]) -> list[Parameter]:
        params = []
        for row in rows:
            if "enum" in row:
                row = {**row, "enum": _split_list(row["enum"], "|")}
            params.append(Parameter.model_validate(row))
        return params

    @staticmethod
    def convert_endpoints(rows: list[dict[str, Any]], parameters: dict[str, list[Parameter]]) -> list[Endpoint]:
        endpoints = []
        for row in rows:
            if "schoolTypes" in row:
                row = {**row, "schoolTypes": _split_list(row["schoolTypes"], ",")}
            endpoint = Endpoint.model_validate(row)
            endpoint.parameters = parameters.get(endpoint.id, [])
            endpoints.append(endpoint)
        return endpoints

    def convert_to_provider_spec(
        self, parsed: dict[str, Any], fallback_id: str, source: str = "<memory>"
    ) -> ProviderSpec:
        """
        Convert a parsed provider document to a ProviderSpec.

        Args:
            parsed: Nested parse result (raw string values)
            fallback_id: Provider id/name when the provider table omits them
            source: File name used in error messages
        """
        try:
            provider_rows = self._table(parsed, "provider", source)
            provider_data = {"id": fallback_id, "name": fallback_id, **(provider_rows[0] if provider_rows else {})}

            auth_rows = self._table(parsed, "authentication", source)
            if auth_rows:
                provider_data["authentication"] = auth_rows[0]

            provider = ProviderMetadata.model_validate(provider_data)

            common = None
            common_tables = self._group(parsed, "commonParameters", source)
            if common_tables:
                common = CommonParameters(
                    required=self.convert_parameters(common_tables.get("required", [])),
                    optional=self.convert_parameters(common_tables.get("optional", [])),
                    time_series=self.convert_parameters(common_tables.get("timeSeries", [])),
                )

            endpoint_params = {
                endpoint_id: self.convert_parameters(rows)
                for endpoint_id, rows in self._group(parsed, "parameters", source).items()
            }

            group_meta = {
                str(row.get("groupId")): row for row in self._table(parsed, "endpointGroups", source)
            }

            endpoint_groups: dict[str, EndpointGroup] = {}
            endpoints: list[Endpoint] = []
            raw_endpoints = parsed.get("endpoints")

            if isinstance(raw_endpoints, dict):
                for group_name, rows in self._group(parsed, "endpoints", source).items():
                    meta = group_meta.get(group_name, {})
                    endpoint_groups[group_name] = EndpointGroup(
                        description=meta.get("description", ""),
                        requires_year=meta.get("requiresYear", False),
                        cache_ttl=meta.get("cacheTtl", 3600),
                        endpoints=self.convert_endpoints(rows, endpoint_params),
                    )
            elif raw_endpoints is not None:
                endpoints = self.convert_endpoints(self._table(parsed, "endpoints", source), endpoint_params)

            tools = [
                ToolDefinition(
                    name=row["name"],
                    description=row.get("description", ""),
                    category=row.get("category", "general"),
                    uses_endpoints=_split_list(row.get("usesEndpoints"), ","),
                )
                for row in self._table(parsed, "tools", source)
            ]

            return ProviderSpec(
                provider=provider,
                common_parameters=common,
                endpoint_groups=endpoint_groups,
                endpoints=endpoints,
                tools=tools,
            )

        except ValidationError as e:
            raise ProviderLoadError(
                f"Invalid provider definition in {source}: {e}", context={"file": source}
            ) from e
        except KeyError as e:
            raise ProviderLoadError(
                f"Missing required column {e} in {source}", context={"file": source}
            ) from e
