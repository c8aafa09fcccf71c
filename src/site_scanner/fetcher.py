"""Fetching target pages and the scripts they link.

Redirects are followed by hand so the number of hops stays bounded, and
bodies are streamed and cut off at a byte limit so a huge bundle cannot
exhaust memory.
"""

import asyncio
import logging
from typing import Callable, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .config import Settings
from .errors import FetchError
from .models import FetchResult, ScriptInventory, SiteContent

logger = logging.getLogger(__name__)

SCRIPT_CONCURRENCY = 5

# Third-party trackers never carry the site's own configuration.
SKIPPED_SCRIPT_MARKERS = ("analytics", "gtag", "googletagmanager")

DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "enotfound",
)

ClientFactory = Callable[[], httpx.AsyncClient]


def create_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Build the shared outbound client."""
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        timeout=settings.page_timeout,
        transport=transport,
    )


def normalize_target(raw: Optional[str]) -> str:
    """Turn user input into an absolute http(s) URL.

    A bare domain gets ``https://``. Raises ValueError for anything that
    cannot be a scannable URL.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise ValueError("URL is required")
    if any(ch.isspace() for ch in candidate):
        raise ValueError(f"Invalid URL: {raw}")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid URL: {raw}")
    return candidate


async def _read_limited(response: httpx.Response, max_bytes: int) -> tuple[bytes, bool]:
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            return bytes(buffer[:max_bytes]), True
    return bytes(buffer), False


async def fetch(
    url: str,
    client: httpx.AsyncClient,
    timeout: float = 5.0,
    max_redirects: int = 3,
    user_agent: Optional[str] = None,
    max_bytes: int = 2_000_000,
    require_success: bool = True,
) -> FetchResult:
    """Fetch a URL, manually following at most ``max_redirects`` redirects.

    Args:
        url: The URL to fetch.
        client: The httpx AsyncClient to use.
        timeout: Per-request timeout in seconds.
        max_redirects: Redirect hops allowed before giving up.
        user_agent: Overrides the client's User-Agent when set.
        max_bytes: Body bytes kept; the rest is discarded.
        require_success: Raise FetchError on a non-2xx final response.

    Returns:
        FetchResult for the final response.

    Raises:
        FetchError: with kind ``timeout``, ``network`` or ``http_status``.
    """
    headers = {"User-Agent": user_agent} if user_agent else None
    current_url = url

    for _ in range(max_redirects + 1):
        redirect_to = None
        try:
            async with client.stream(
                "GET",
                current_url,
                headers=headers,
                timeout=timeout,
                follow_redirects=False,
            ) as response:
                if response.is_redirect:
                    redirect_to = urljoin(current_url, response.headers.get("location", ""))
                else:
                    raw, truncated = await _read_limited(response, max_bytes)
                    status_code = response.status_code
                    response_headers = {k.lower(): v for k, v in response.headers.items()}
                    encoding = response.encoding or "utf-8"
        except httpx.TimeoutException as e:
            raise FetchError("timeout", current_url, f"Timed out fetching {current_url}") from e
        except httpx.RequestError as e:
            raise FetchError("network", current_url, f"Could not fetch {current_url}: {e}") from e

        if redirect_to:
            current_url = redirect_to
            continue

        if require_success and not 200 <= status_code < 300:
            raise FetchError(
                "http_status",
                current_url,
                f"{current_url} answered with HTTP {status_code}",
                status_code=status_code,
            )

        if truncated:
            logger.warning(f"Body of {current_url} truncated at {max_bytes} bytes")

        return FetchResult(
            url=url,
            final_url=current_url,
            status_code=status_code,
            headers=response_headers,
            body=raw.decode(encoding, errors="replace"),
            truncated=truncated,
        )

    raise FetchError("network", url, f"Too many redirects (more than {max_redirects})")


def extract_scripts(html: str, base_url: str) -> ScriptInventory:
    """Collect linked script URLs and inline script bodies from HTML.

    Relative sources are resolved against ``base_url``; protocol-relative
    ones get ``https:``. ``data:`` sources and analytics tags are skipped.
    """
    soup = BeautifulSoup(html, "lxml")
    inventory = ScriptInventory()
    seen: set[str] = set()

    for tag in soup.find_all("script"):
        src = (tag.get("src") or "").strip()
        if not src:
            content = tag.get_text()
            if content.strip():
                inventory.inline.append(content)
            continue

        if src.startswith("data:"):
            continue
        full_url = f"https:{src}" if src.startswith("//") else urljoin(base_url, src)
        if urlparse(full_url).scheme not in ("http", "https"):
            continue
        if any(marker in full_url.lower() for marker in SKIPPED_SCRIPT_MARKERS):
            continue

        if full_url not in seen:
            seen.add(full_url)
            inventory.urls.append(full_url)

    return inventory


async def fetch_site_content(
    url: str,
    client: httpx.AsyncClient,
    settings: Settings,
) -> SiteContent:
    """Fetch the target page and up to ``settings.max_scripts`` linked scripts.

    The page fetch raises FetchError on failure. Script failures are
    logged and listed in ``failed_scripts``.
    """
    page = await fetch(
        url,
        client,
        timeout=settings.page_timeout,
        max_redirects=settings.max_redirects,
        max_bytes=settings.max_body_bytes,
    )

    inventory = extract_scripts(page.body, page.final_url)
    script_urls = inventory.urls[: settings.max_scripts]
    if len(inventory.urls) > len(script_urls):
        logger.info(f"{page.final_url} links {len(inventory.urls)} scripts, fetching the first {len(script_urls)}")

    semaphore = asyncio.Semaphore(SCRIPT_CONCURRENCY)

    async def load(script_url: str) -> Optional[FetchResult]:
        async with semaphore:
            try:
                return await fetch(
                    script_url,
                    client,
                    timeout=settings.script_timeout,
                    max_redirects=settings.max_redirects,
                    max_bytes=settings.max_body_bytes,
                )
            except FetchError as e:
                logger.warning(f"Skipping script {script_url}: {e}")
                return None

    results = await asyncio.gather(*(load(u) for u in script_urls))

    content = SiteContent(page=page, inline_scripts=inventory.inline, script_urls=script_urls)
    for script_url, result in zip(script_urls, results):
        if result is None:
            content.failed_scripts.append(script_url)
        else:
            content.scripts[script_url] = result.body

    logger.info(
        f"Fetched {page.final_url}: {len(content.scripts)} scripts, "
        f"{len(content.inline_scripts)} inline, {len(content.failed_scripts)} failed"
    )
    return content


def is_dns_failure(error: BaseException) -> bool:
    """True when a fetch failed because the host name does not resolve."""
    if isinstance(error, FetchError) and error.kind != "network":
        return False
    text = " ".join(str(e) for e in (error, error.__cause__) if e is not None).lower()
    return any(marker in text for marker in DNS_FAILURE_MARKERS)
