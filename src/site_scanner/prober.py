"""Row-level security probing with the project's public key.

Each table gets one small anonymous read. Tables are probed a few at a time
with a pause between batches so the target project never sees a burst.
"""

import asyncio
import logging
from typing import Optional, Sequence, Union

import httpx

from .models import ProbeVerdict, RlsCheck, TableSchema, TableSummary
from .schema import backend_headers

logger = logging.getLogger(__name__)

COMMON_TABLES = ["profiles", "users", "accounts", "auth", "customers", "orders", "posts", "comments"]


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "Unknown error"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "Unknown error")
    return "Unknown error"


async def probe_table(
    endpoint_url: str,
    api_key: str,
    table: str,
    client: httpx.AsyncClient,
    timeout: float = 3.0,
    limit: int = 1,
    bearer: Optional[str] = None,
) -> ProbeVerdict:
    """Read up to ``limit`` rows of ``table`` and classify the answer.

    200 with rows is public. 200 with no rows, 401 and 403 are protected.
    Any other status, an unreadable body or a transport error is reported
    through ``error_message`` and never as public.
    """
    url = f"{endpoint_url.rstrip('/')}/rest/v1/{table}"
    try:
        response = await client.get(
            url,
            params={"select": "*", "limit": str(limit)},
            headers=backend_headers(api_key, bearer=bearer or ""),
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        logger.warning(f"Probe of table {table} failed: {e.__class__.__name__}")
        return ProbeVerdict(error_message=f"Request failed: {e.__class__.__name__}")

    status = response.status_code
    if 200 <= status < 300:
        try:
            rows = response.json()
        except ValueError:
            return ProbeVerdict(status_code=status, error_message="Response body is not JSON")
        if not isinstance(rows, list):
            return ProbeVerdict(status_code=status, error_message="Unexpected response format")
        if rows:
            return ProbeVerdict(is_public=True, status_code=status, rows_returned=len(rows))
        # An empty but unprotected table looks the same as an enforced policy.
        return ProbeVerdict(rls_enabled=True, status_code=status)

    if status in (401, 403):
        return ProbeVerdict(rls_enabled=True, status_code=status)

    return ProbeVerdict(status_code=status, error_message=f"HTTP {status}: {_error_detail(response)}")


def apply_verdict(table: TableSchema, verdict: ProbeVerdict) -> TableSchema:
    table.is_public = verdict.is_public
    table.rls_enabled = verdict.rls_enabled
    table.error_message = verdict.error_message
    return table


async def probe_tables(
    endpoint_url: str,
    api_key: str,
    tables: Sequence[Union[str, TableSchema]],
    client: httpx.AsyncClient,
    batch_size: int = 5,
    batch_pause: float = 0.2,
    timeout: float = 3.0,
    bearer: Optional[str] = None,
    limit: int = 1,
) -> list[TableSchema]:
    """Probe every table in fixed-size batches.

    Args:
        endpoint_url: Project URL.
        api_key: The anon key; no elevated credential is ever used.
        tables: Table names or discovered TableSchema objects.
        client: The httpx AsyncClient to use.
        batch_size: Probes in flight at once.
        batch_pause: Seconds to wait between batches.
        timeout: Per-probe timeout.
        bearer: Optional user token sent instead of the anon key as bearer.
        limit: Rows requested per probe.

    Returns:
        One TableSchema per input, in input order, with the verdict applied.
    """
    schemas = [TableSchema(name=t) if isinstance(t, str) else t.model_copy(deep=True) for t in tables]

    for start in range(0, len(schemas), batch_size):
        batch = schemas[start : start + batch_size]
        results = await asyncio.gather(
            *(
                probe_table(endpoint_url, api_key, table.name, client, timeout=timeout, limit=limit, bearer=bearer)
                for table in batch
            ),
            return_exceptions=True,
        )
        for table, result in zip(batch, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error probing table {table.name}: {result!r}")
                result = ProbeVerdict(error_message="Probe failed")
            elif isinstance(result, BaseException):
                raise result
            apply_verdict(table, result)

        if start + batch_size < len(schemas) and batch_pause > 0:
            await asyncio.sleep(batch_pause)

    summary = summarize_tables(schemas)
    logger.info(
        f"Probed {summary.total_tables} tables: {summary.public_tables} public, "
        f"{summary.protected_tables} protected, {summary.error_tables} errors"
    )
    return schemas


def summarize_tables(tables: Sequence[TableSchema]) -> TableSummary:
    public = sum(1 for t in tables if t.is_public)
    errors = sum(1 for t in tables if not t.is_public and t.error_message)
    return TableSummary(
        total_tables=len(tables),
        public_tables=public,
        protected_tables=len(tables) - public - errors,
        error_tables=errors,
    )


async def check_common_tables(
    endpoint_url: str,
    api_key: str,
    client: httpx.AsyncClient,
    timeout: float = 3.0,
    batch_size: int = 5,
    batch_pause: float = 0.2,
    tables: Sequence[str] = COMMON_TABLES,
) -> RlsCheck:
    """Probe well-known table names with a 10-row limit.

    Used when no schema is available; tables that do not exist simply
    come back as errors and are not reported.
    """
    probed = await probe_tables(
        endpoint_url,
        api_key,
        list(tables),
        client,
        batch_size=batch_size,
        batch_pause=batch_pause,
        timeout=timeout,
        limit=10,
    )
    vulnerable = [table.name for table in probed if table.is_public]
    return RlsCheck(
        is_rls_vulnerable=bool(vulnerable),
        vulnerable_tables=vulnerable,
        message=(
            f"Found {len(vulnerable)} tables without proper RLS protection"
            if vulnerable
            else "No RLS vulnerabilities detected"
        ),
    )
