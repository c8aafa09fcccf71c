"""Subdomain discovery: a common-label wordlist plus certificate transparency names."""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from .models import SubdomainAnalysis, SubdomainResult

logger = logging.getLogger(__name__)

COMMON_SUBDOMAINS = [
    "www", "api", "app", "admin", "dev", "staging", "test", "beta", "cdn", "mail", "blog",
    "shop", "support", "docs", "portal", "dashboard", "auth", "login", "secure", "vpn", "ftp",
]

CT_LOG_URL = "https://crt.sh/"
MAX_CANDIDATES = 40
CHECK_CONCURRENCY = 10


def base_domain(url: str) -> str:
    """Hostname of the target without a leading ``www.``."""
    host = (urlparse(url if "://" in url else f"https://{url}").hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


async def query_ct_logs(domain: str, client: httpx.AsyncClient, timeout: float = 10.0) -> list[str]:
    """Names under ``domain`` seen in certificates logged at crt.sh.

    The log is an optional source: failures are logged and yield no names.
    """
    try:
        response = await client.get(CT_LOG_URL, params={"q": f"%.{domain}", "output": "json"}, timeout=timeout)
        response.raise_for_status()
        entries = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Certificate transparency lookup for {domain} failed: {e.__class__.__name__}")
        return []

    if not isinstance(entries, list):
        return []

    names: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for name in str(entry.get("name_value", "")).split("\n"):
            name = name.strip().lower()
            if name.startswith("*."):
                continue
            if name.endswith(f".{domain}") and " " not in name and name not in names:
                names.append(name)
    return names


def build_candidates(domain: str, extra: Optional[list[str]] = None, limit: int = MAX_CANDIDATES) -> list[str]:
    candidates: list[str] = []
    for name in [f"{label}.{domain}" for label in COMMON_SUBDOMAINS] + list(extra or []):
        if name != domain and name not in candidates:
            candidates.append(name)
    return candidates[:limit]


async def check_subdomain(host: str, client: httpx.AsyncClient, timeout: float = 3.0) -> SubdomainResult:
    """HEAD the host over HTTPS, retrying with GET when HEAD is not allowed."""
    url = f"https://{host}"
    try:
        response = await client.head(url, timeout=timeout, follow_redirects=False)
        if response.status_code == 405:
            response = await client.get(url, timeout=timeout, follow_redirects=False)
    except httpx.HTTPError as e:
        return SubdomainResult(subdomain=host, error=e.__class__.__name__)
    return SubdomainResult(
        subdomain=host,
        status=response.status_code,
        accessible=response.status_code < 400,
    )


async def discover_subdomains(
    url: str,
    client: httpx.AsyncClient,
    use_ct_logs: bool = True,
    timeout: float = 3.0,
) -> SubdomainAnalysis:
    """Enumerate candidate subdomains of the target and keep the ones that answer."""
    domain = base_domain(url)
    if not domain:
        return SubdomainAnalysis(error=f"Cannot determine a domain from {url}")

    ct_names = await query_ct_logs(domain, client) if use_ct_logs else []
    candidates = build_candidates(domain, ct_names)

    semaphore = asyncio.Semaphore(CHECK_CONCURRENCY)

    async def check(host: str) -> SubdomainResult:
        async with semaphore:
            return await check_subdomain(host, client, timeout=timeout)

    results = await asyncio.gather(*(check(host) for host in candidates))
    live = [r for r in results if r.status > 0]

    logger.info(f"Subdomain scan of {domain}: {len(live)} of {len(candidates)} candidates answered")
    return SubdomainAnalysis(
        domain=domain,
        candidates_checked=len(candidates),
        live_subdomains=live,
        total_found=len(live),
        scan_method="wordlist+certificate_transparency" if ct_names else "wordlist",
    )
