"""Table discovery from a Supabase project's OpenAPI description."""

import logging
from typing import Any

import httpx

from .errors import SchemaError
from .models import ColumnInfo, TableSchema

logger = logging.getLogger(__name__)

PLACEHOLDER_COLUMN = ColumnInfo(
    name="id",
    type="unknown",
    nullable=False,
    description="Schema details not available",
)


def backend_headers(api_key: str, bearer: str = "", accept: str = "application/json") -> dict[str, str]:
    """Headers for a PostgREST call made with the project's anon key."""
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {bearer or api_key}",
        "Accept": accept,
    }


async def fetch_openapi(
    endpoint_url: str,
    api_key: str,
    client: httpx.AsyncClient,
    timeout: float = 8.0,
) -> dict:
    """GET ``{endpoint}/rest/v1/`` and return the decoded OpenAPI document.

    Raises:
        SchemaError: on network failure, a non-200 answer or a non-JSON body.
    """
    url = f"{endpoint_url.rstrip('/')}/rest/v1/"
    logger.info(f"Fetching OpenAPI schema from {endpoint_url}")
    try:
        response = await client.get(
            url,
            headers=backend_headers(api_key, accept="application/openapi+json"),
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        raise SchemaError(f"Failed to fetch schema: {e.__class__.__name__}") from e

    if response.status_code != 200:
        raise SchemaError(f"Failed to fetch schema: HTTP {response.status_code}", status_code=response.status_code)

    try:
        document = response.json()
    except ValueError as e:
        raise SchemaError("Schema response is not JSON") from e
    if not isinstance(document, dict):
        raise SchemaError("Schema response is not an object")
    return document


def _table_names(paths: dict) -> list[str]:
    names = []
    for path in paths:
        parts = [part for part in str(path).split("/") if part]
        if len(parts) == 1 and not parts[0].startswith("rpc") and parts[0] not in names:
            names.append(parts[0])
    return names


def _columns_from_parameters(document: dict, table: str) -> list[ColumnInfo]:
    operation = (document.get("paths") or {}).get(f"/{table}") or {}
    parameters = (operation.get("get") or {}).get("parameters") or []
    definitions: dict[str, Any] = document.get("parameters") or {}
    prefix = f"rowFilter.{table}."

    columns = []
    for param in parameters:
        ref = param.get("$ref", "") if isinstance(param, dict) else ""
        if prefix not in ref:
            continue
        name = ref.split(".")[-1]
        definition = definitions.get(ref.split("/")[-1]) or {}
        columns.append(
            ColumnInfo(
                name=name,
                type=definition.get("format") or definition.get("type") or "unknown",
                nullable=not definition.get("required", False),
                description=definition.get("description", ""),
            )
        )
    return columns


def _enrich_from_definition(document: dict, table: str, columns: list[ColumnInfo]) -> list[ColumnInfo]:
    """Fill in types and nullability from ``definitions.<table>`` when present."""
    definition = (document.get("definitions") or {}).get(table)
    if not isinstance(definition, dict):
        return columns
    properties = definition.get("properties") or {}
    required = set(definition.get("required") or [])

    if not columns:
        columns = [ColumnInfo(name=name) for name in properties]
    for column in columns:
        prop = properties.get(column.name)
        if not isinstance(prop, dict):
            continue
        column.type = prop.get("format") or prop.get("type") or column.type
        column.nullable = column.name not in required
        if prop.get("description"):
            column.description = prop["description"]
    return columns


def parse_tables(document: dict) -> list[TableSchema]:
    """Extract tables and best-effort columns from an OpenAPI document.

    Single-segment paths are tables; ``rpc`` paths are functions and are
    skipped. A table whose columns cannot be recovered gets one placeholder
    column instead of being dropped.
    """
    paths = document.get("paths")
    if not isinstance(paths, dict):
        return []

    tables = []
    for name in _table_names(paths):
        columns = _enrich_from_definition(document, name, _columns_from_parameters(document, name))
        if not columns:
            columns = [PLACEHOLDER_COLUMN.model_copy()]
        tables.append(TableSchema(name=name, columns=columns))

    logger.info(f"Parsed {len(tables)} tables from schema")
    return tables


async def discover_schema(
    endpoint_url: str,
    api_key: str,
    client: httpx.AsyncClient,
    timeout: float = 8.0,
) -> list[TableSchema]:
    """Fetch and parse the project's schema. Raises SchemaError."""
    document = await fetch_openapi(endpoint_url, api_key, client, timeout=timeout)
    return parse_tables(document)
