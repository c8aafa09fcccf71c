"""Login and signup page discovery with a CAPTCHA check."""

import asyncio
import logging
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .errors import FetchError
from .fetcher import fetch
from .models import AuthPageCheck, Finding, Severity

logger = logging.getLogger(__name__)

AUTH_KEYWORDS = ("login", "signin", "signup", "register", "auth", "account/create")
FORM_KEYWORDS = ("password", "login", "signin", "signup")
MAX_AUTH_PAGES = 5

CAPTCHA_SELECTORS = ("div.g-recaptcha", "div.h-captcha", "div.cf-turnstile")
CAPTCHA_MARKERS = (
    "grecaptcha",
    "google.com/recaptcha",
    "hcaptcha.com",
    "turnstile.js",
    "challenges.cloudflare.com",
)


def find_auth_pages(html: str, base_url: str) -> list[str]:
    """Return auth-looking links on the page, plus the page itself if it has an auth form."""
    soup = BeautifulSoup(html, "lxml")
    pages: list[str] = []

    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        if href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        text = link.get_text(" ", strip=True).lower()
        if not any(keyword in href.lower() or keyword in text for keyword in AUTH_KEYWORDS):
            continue
        full_url = urljoin(base_url, href)
        if urlparse(full_url).scheme in ("http", "https") and full_url not in pages:
            pages.append(full_url)

    for form in soup.find_all("form"):
        action = (form.get("action") or "").lower()
        form_html = str(form).lower()
        if any(k in action for k in ("login", "signin", "signup")) or any(k in form_html for k in FORM_KEYWORDS):
            if base_url not in pages:
                pages.append(base_url)
            break

    return pages


def has_captcha(html: str) -> bool:
    """reCAPTCHA, hCaptcha or Cloudflare Turnstile present on the page."""
    lowered = html.lower()
    if any(marker in lowered for marker in CAPTCHA_MARKERS):
        return True
    soup = BeautifulSoup(html, "lxml")
    return any(soup.select_one(selector) is not None for selector in CAPTCHA_SELECTORS)


async def check_auth_pages(
    html: str,
    base_url: str,
    client: httpx.AsyncClient,
    timeout: float = 5.0,
    max_pages: int = MAX_AUTH_PAGES,
) -> AuthPageCheck:
    """Fetch up to ``max_pages`` auth pages and sort them by CAPTCHA protection.

    A page that cannot be fetched counts as unprotected since its
    protection cannot be verified.
    """
    pages = find_auth_pages(html, base_url)[:max_pages]
    result = AuthPageCheck(found=pages)

    async def inspect(page_url: str) -> bool:
        if page_url == base_url:
            return has_captcha(html)
        try:
            page = await fetch(page_url, client, timeout=timeout)
        except FetchError as e:
            logger.warning(f"Could not check auth page {page_url}: {e}")
            return False
        return has_captcha(page.body)

    verdicts = await asyncio.gather(*(inspect(page) for page in pages))
    for page_url, protected in zip(pages, verdicts):
        (result.protected if protected else result.unprotected).append(page_url)
    return result


def unprotected_page_findings(check: AuthPageCheck) -> list[Finding]:
    return [
        Finding(
            type="Unprotected Auth Page",
            preview=f"Auth page without CAPTCHA: {page[:30]}...",
            details=(
                f"Authentication page found at {page} does not appear to have CAPTCHA or Turnstile "
                "protection, making it vulnerable to credential stuffing and brute force attacks."
            ),
            severity=Severity.medium,
        )
        for page in check.unprotected
    ]
