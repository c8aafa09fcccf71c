"""Probing the target with a caller-supplied user token."""

import asyncio
import logging
from typing import Optional, Sequence
from urllib.parse import urljoin

import httpx

from .models import (
    AuthenticatedAnalysis,
    BackendCredential,
    EndpointResult,
    PermissionFinding,
    Severity,
)
from .prober import probe_tables

logger = logging.getLogger(__name__)

TEST_ENDPOINTS = [
    "/api/user/profile",
    "/api/users",
    "/api/admin",
    "/rest/v1/profiles",
    "/rest/v1/users",
]

EXCESSIVE_ACCESS_THRESHOLD = 3


def is_jwt_shaped(token: Optional[str]) -> bool:
    return bool(token) and len(token.split(".")) == 3 and all(token.split("."))


async def check_endpoint(url: str, endpoint: str, token: str, client: httpx.AsyncClient, timeout: float) -> EndpointResult:
    try:
        response = await client.get(
            urljoin(url, endpoint),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            follow_redirects=False,
        )
    except httpx.HTTPError as e:
        return EndpointResult(endpoint=endpoint, error=e.__class__.__name__)
    return EndpointResult(
        endpoint=endpoint,
        status=response.status_code,
        accessible=response.is_success,
    )


def analyze_permissions(results: Sequence[EndpointResult]) -> list[PermissionFinding]:
    """Flag tokens that reach many endpoints or any admin endpoint."""
    accessible = [r for r in results if r.accessible]
    findings = []
    if len(accessible) > EXCESSIVE_ACCESS_THRESHOLD:
        findings.append(
            PermissionFinding(
                type="excessive_access",
                severity=Severity.medium,
                message=f"JWT token provides access to {len(accessible)} endpoints - review permissions",
            )
        )
    if any("admin" in r.endpoint for r in accessible):
        findings.append(
            PermissionFinding(
                type="admin_access",
                severity=Severity.high,
                message="JWT token has admin-level access - ensure this is intended",
            )
        )
    return findings


async def authenticated_analysis(
    url: str,
    token: Optional[str],
    client: httpx.AsyncClient,
    credential: Optional[BackendCredential] = None,
    tables: Sequence[str] = (),
    timeout: float = 5.0,
    batch_size: int = 5,
    batch_pause: float = 0.2,
) -> AuthenticatedAnalysis:
    """Request a fixed endpoint list with the caller's token.

    When a backend credential is known, the discovered tables are also read
    with the anon key plus the user token to see what that user can reach.
    """
    if not token:
        return AuthenticatedAnalysis(performed=False)
    if not is_jwt_shaped(token):
        return AuthenticatedAnalysis(performed=True, jwt_token_valid=False, error="Invalid JWT token format")

    results = list(
        await asyncio.gather(*(check_endpoint(url, endpoint, token, client, timeout) for endpoint in TEST_ENDPOINTS))
    )
    analysis = AuthenticatedAnalysis(
        performed=True,
        jwt_token_valid=True,
        tested_endpoints=results,
        accessible_endpoints=sum(1 for r in results if r.accessible),
        permission_findings=analyze_permissions(results),
    )

    if credential and tables:
        probed = await probe_tables(
            credential.endpoint_url,
            credential.api_key,
            list(tables),
            client,
            batch_size=batch_size,
            batch_pause=batch_pause,
            timeout=timeout,
            bearer=token,
        )
        analysis.readable_tables = [t.name for t in probed if t.is_public]

    logger.info(
        f"Authenticated analysis of {url}: {analysis.accessible_endpoints} endpoints, "
        f"{len(analysis.readable_tables)} tables readable"
    )
    return analysis
