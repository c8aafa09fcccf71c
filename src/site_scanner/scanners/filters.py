"""False-positive suppression for secret matches.

Each check takes the source line a match was found on and is usable on its
own; ``reject_reason`` runs them in order and names the first that fires.
"""

import re
from typing import Optional

from .credentials import decode_jwt_claims
from .patterns import TRUSTED_RULES, SecretRule

MINIFIED_LINE_LENGTH = 500

# Lines that look like credentials but are minified-code or analytics noise.
IGNORE_PATTERNS: list[re.Pattern] = [
    re.compile(r"['\"](configurable|enumerable|writable|constructor|prototype|function)['\"]", re.IGNORECASE),
    re.compile(r"dby[\"']", re.IGNORECASE),
    # MD5-style hashes and hyphenless UUIDs
    re.compile(r"['\"]\b[a-f0-9]{32}\b['\"]", re.IGNORECASE),
    re.compile(r"['\"][a-zA-Z0-9]{32}['\"]\s*(?:as|in|for|from|on)\s", re.IGNORECASE),
    re.compile(r"console\.log\(\"data-|console\.log\(t\)|console\.log\([^,)]{1,20}\)", re.IGNORECASE),
    # short key/value pairs in minified objects
    re.compile(r"['\"]\w{1,10}['\"]\s*[:=]\s*['\"]\w{1,10}['\"]"),
    re.compile(r"getElementById\(['\"][a-zA-Z0-9_-]+['\"]\)|querySelector\(['\"]#[a-zA-Z0-9_-]+['\"]\)"),
    re.compile(r"font-\w+:|fontFamily:"),
    re.compile(r"\* @license|\* Copyright"),
]

# Keys that are public by design.
PUBLIC_KEY_PATTERNS: list[re.Pattern] = [
    re.compile(r"sitekey['\"]?\s*[:=]\s*['\"](?:0x4A)?[a-zA-Z0-9_-]+['\"]", re.IGNORECASE),
    re.compile(r"['\"]?g-recaptcha-(?:response|token)['\"]?", re.IGNORECASE),
    re.compile(r"publishable[-_]?key|public[-_]?key|site[-_]?key|client[-_]?id", re.IGNORECASE),
    re.compile(r"vapid[-_]?public[-_]?key", re.IGNORECASE),
    re.compile(r"gtag|google[-_]?tag|ga[-_]?id|tracking[-_]?id", re.IGNORECASE),
]

CAPTCHA_MARKERS = ("sitekey", "recaptcha", "captcha")

_WHITESPACE = re.compile(r"\s+")
_SYMBOL_RUN = re.compile(r"[;{}():,]{10,}")


def is_likely_minified(line: str) -> bool:
    """Long line with very few whitespace breaks or long runs of punctuation."""
    if len(line) <= MINIFIED_LINE_LENGTH:
        return False
    words = len(_WHITESPACE.split(line))
    return words < len(line) / 20 or bool(_SYMBOL_RUN.search(line))


def matches_ignore_pattern(line: str) -> bool:
    return any(pattern.search(line) for pattern in IGNORE_PATTERNS)


def is_public_key_context(line: str) -> bool:
    """CAPTCHA site keys, publishable keys, client ids and tracking ids."""
    lowered = line.lower()
    if any(marker in lowered for marker in CAPTCHA_MARKERS):
        return True
    return any(pattern.search(line) for pattern in PUBLIC_KEY_PATTERNS)


def is_public_jwt(token: str) -> bool:
    """A JWT whose claims mark it as an anonymous client key."""
    claims = decode_jwt_claims(token)
    return bool(claims) and claims.get("role") == "anon"


def reject_reason(rule: SecretRule, line: str, value: str) -> Optional[str]:
    """Return why a match should be dropped, or None to keep it."""
    if matches_ignore_pattern(line):
        return "ignored_pattern"
    if is_public_key_context(line):
        return "public_key"
    if value.startswith("eyJ") and is_public_jwt(value):
        return "anon_key"
    if rule.name not in TRUSTED_RULES and is_likely_minified(line):
        return "minified"
    return None
