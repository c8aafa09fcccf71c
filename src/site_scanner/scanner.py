"""Quick scan and Supabase backend analysis.

These are the scan operations shared by the HTTP endpoints, the deep-scan
orchestrator and the sandbox entrypoint.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from . import headers
from .auth_pages import check_auth_pages, unprotected_page_findings
from .config import Settings
from .fetcher import fetch_site_content
from .models import (
    BackendAnalysis,
    BackendCredential,
    Finding,
    QuickScanReport,
    RlsCheck,
    Severity,
)
from .prober import check_common_tables, probe_tables, summarize_tables
from .schema import discover_schema
from .scanners import detect_many, find_credential
from .scorer import quick_score

logger = logging.getLogger(__name__)


def supabase_finding(credential: BackendCredential, rls: Optional[RlsCheck]) -> Finding:
    """Report embedded Supabase credentials.

    The anon key is meant to be public, so the finding is informational
    unless a read probe showed exposed tables.
    """
    vulnerable = bool(rls and rls.is_rls_vulnerable)
    details = "Found Supabase URL and anon key"
    if rls is None:
        details += " - RLS was not tested"
    elif vulnerable:
        details += f" - CRITICAL: RLS appears to be misconfigured, found {len(rls.vulnerable_tables)} accessible tables!"
    else:
        details += " - RLS appears to be configured correctly"

    return Finding(
        type="Supabase Credentials",
        preview=f"URL: {credential.endpoint_url[:15]}... Key: {credential.api_key[:8]}...",
        details=details,
        severity=Severity.high if vulnerable else Severity.secure,
    )


async def quick_scan(
    url: str,
    client: httpx.AsyncClient,
    settings: Settings,
    check_rls: bool = False,
    check_auth: bool = True,
) -> QuickScanReport:
    """Fetch the page and its scripts, audit headers and look for leaked secrets.

    Raises FetchError when the page itself cannot be fetched.
    """
    content = await fetch_site_content(url, client, settings)
    documents = content.documents()

    audit = headers.audit(content.page.headers)
    findings = detect_many(documents)

    credential = find_credential(documents)
    rls = None
    if credential:
        logger.info(f"Supabase project {credential.project_id} referenced by {url}")
        if check_rls:
            rls = await check_common_tables(
                credential.endpoint_url,
                credential.api_key,
                client,
                timeout=settings.probe_timeout,
                batch_size=settings.probe_batch_size,
                batch_pause=settings.probe_batch_pause,
            )
        findings.append(supabase_finding(credential, rls))

    auth_check = None
    if check_auth:
        auth_check = await check_auth_pages(
            content.page.body,
            content.page.final_url,
            client,
            timeout=settings.page_timeout,
        )
        findings.extend(unprotected_page_findings(auth_check))

    report = QuickScanReport(
        url=url,
        headers=audit,
        leaks=findings,
        js_files_scanned=len(content.script_urls),
        supabase_detected=credential is not None,
        rls_vulnerability=rls,
        auth_pages=auth_check,
        score=quick_score(audit, findings),
        scanned_at=datetime.now(timezone.utc),
    )
    logger.info(f"Quick scan of {url}: score {report.score}, {len(findings)} findings")
    return report


async def find_site_credential(
    url: str,
    client: httpx.AsyncClient,
    settings: Settings,
) -> Optional[BackendCredential]:
    """Fetch the site and look for a Supabase URL and key. Raises FetchError."""
    content = await fetch_site_content(url, client, settings)
    return find_credential(content.documents())


async def analyze_backend(
    credential: BackendCredential,
    client: httpx.AsyncClient,
    settings: Settings,
) -> BackendAnalysis:
    """Discover the project's tables and probe each one.

    Raises SchemaError when the schema cannot be fetched.
    """
    started = time.monotonic()
    tables = await discover_schema(
        credential.endpoint_url,
        credential.api_key,
        client,
        timeout=settings.schema_timeout,
    )
    probed = await probe_tables(
        credential.endpoint_url,
        credential.api_key,
        tables,
        client,
        batch_size=settings.probe_batch_size,
        batch_pause=settings.probe_batch_pause,
        timeout=settings.probe_timeout,
    )
    return BackendAnalysis(
        supabase_detected=True,
        supabase_url=credential.endpoint_url,
        project_id=credential.project_id,
        credential_source=credential.source,
        tables=probed,
        summary=summarize_tables(probed),
        scanned_at=datetime.now(timezone.utc),
        scan_time_ms=int((time.monotonic() - started) * 1000),
    )
