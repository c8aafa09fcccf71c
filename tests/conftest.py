"""Shared fixtures for site-scanner tests."""

import base64
import json

import pytest

from site_scanner.config import Settings

JWT_HEADER = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9"


def _encode(claims: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()


@pytest.fixture
def make_jwt():
    """Build an unsigned-looking JWT with the given claims."""

    def build(**claims) -> str:
        return f"{JWT_HEADER}.{_encode(claims)}.c2lnbmF0dXJlLXZhbHVlLTEyMzQ1"

    return build


@pytest.fixture
def anon_key(make_jwt):
    return make_jwt(iss="supabase", ref="abcd1234", role="anon")


@pytest.fixture
def settings():
    """Settings with pauses and delays removed so tests run fast."""
    return Settings(
        service_key="test-service-key",
        probe_batch_pause=0,
        step_delay=0,
        use_ct_logs=False,
    )
