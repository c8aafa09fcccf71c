"""Supabase credential extraction from page and script content."""

import base64
import binascii
import json
import re
from typing import Iterable, Optional

from ..models import BackendCredential

SUPABASE_URL_PATTERN = re.compile(r"https://([a-z0-9][a-z0-9-]*)\.supabase\.co", re.IGNORECASE)
JWT_PATTERN = re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")


def decode_jwt_claims(token: str) -> Optional[dict]:
    """Decode the payload segment of a JWT without verifying it.

    Returns None when the token is not three segments or the payload is not
    a base64url-encoded JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3 or not parts[1]:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def project_id_from_url(url: Optional[str]) -> Optional[str]:
    """Return the project ref from a ``https://<ref>.supabase.co`` URL."""
    if not url:
        return None
    match = SUPABASE_URL_PATTERN.search(url)
    return match.group(1).lower() if match else None


def _pick_token(tokens: list[str], project_id: str) -> Optional[str]:
    """Prefer a token issued for this project, then any Supabase token, then the first."""
    if not tokens:
        return None
    claims = [decode_jwt_claims(t) or {} for t in tokens]
    for token, claim in zip(tokens, claims):
        if claim.get("ref") == project_id:
            return token
    for token, claim in zip(tokens, claims):
        if claim.get("iss") == "supabase" or str(claim.get("iss", "")).endswith(".supabase.co/auth/v1"):
            return token
    return tokens[0]


def extract_credential(text: str) -> Optional[BackendCredential]:
    """Find a Supabase project URL and a JWT-shaped key in one piece of text.

    Absence of either half is the common case and yields None.
    """
    url_match = SUPABASE_URL_PATTERN.search(text)
    if not url_match:
        return None
    project_id = url_match.group(1).lower()

    token = _pick_token(JWT_PATTERN.findall(text), project_id)
    if not token:
        return None

    return BackendCredential(
        endpoint_url=f"https://{project_id}.supabase.co",
        api_key=token,
        project_id=project_id,
        source="extracted",
    )


def find_credential(contents: Iterable[str]) -> Optional[BackendCredential]:
    """Pair URL and key within each document first, then across all of them."""
    documents = [c for c in contents if c]
    for document in documents:
        credential = extract_credential(document)
        if credential:
            return credential
    if len(documents) > 1:
        return extract_credential("\n".join(documents))
    return None


def resolve_credential(
    direct_url: Optional[str],
    direct_key: Optional[str],
    contents: Iterable[str] = (),
) -> Optional[BackendCredential]:
    """Caller-supplied URL and key win over anything found in content."""
    if direct_url and direct_key:
        return BackendCredential(
            endpoint_url=direct_url.strip().rstrip("/"),
            api_key=direct_key.strip(),
            project_id=project_id_from_url(direct_url),
            source="direct",
        )
    return find_credential(contents)
