"""Security header audit."""

from typing import Mapping

from .models import HeaderAudit

SECURITY_HEADERS = (
    "content-security-policy",
    "strict-transport-security",
    "x-frame-options",
    "x-content-type-options",
    "x-xss-protection",
    "referrer-policy",
    "permissions-policy",
)

HEADER_RECOMMENDATIONS = {
    "content-security-policy": "Add a Content-Security-Policy header to restrict where scripts, styles and frames may load from.",
    "strict-transport-security": "Add Strict-Transport-Security (e.g. max-age=31536000; includeSubDomains) to force HTTPS.",
    "x-frame-options": "Add X-Frame-Options: DENY or SAMEORIGIN to prevent clickjacking.",
    "x-content-type-options": "Add X-Content-Type-Options: nosniff to stop MIME type sniffing.",
    "x-xss-protection": "Add X-XSS-Protection: 1; mode=block for older browsers.",
    "referrer-policy": "Add Referrer-Policy: strict-origin-when-cross-origin to limit leaked referrer data.",
    "permissions-policy": "Add a Permissions-Policy header to disable browser features the site does not use.",
}


def audit(headers: Mapping[str, str]) -> HeaderAudit:
    """Split the canonical security headers into present and missing.

    Header names are matched case-insensitively.
    """
    names = {name.lower() for name in headers}
    result = HeaderAudit()
    for header in SECURITY_HEADERS:
        if header in names:
            result.present.append(header)
        else:
            result.missing.append(header)
    return result


def headers_score(result: HeaderAudit) -> int:
    """Percentage of canonical headers present, rounded."""
    return round(len(result.present) / len(SECURITY_HEADERS) * 100)


def header_recommendations(missing: list[str]) -> list[str]:
    return [HEADER_RECOMMENDATIONS[name] for name in missing if name in HEADER_RECOMMENDATIONS]
