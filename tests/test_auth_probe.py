"""Tests for authenticated endpoint probing."""

import httpx

from site_scanner.auth_probe import analyze_permissions, authenticated_analysis, is_jwt_shaped
from site_scanner.models import BackendCredential, EndpointResult


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "abcd1234.supabase.co":
        if request.url.path.endswith("/orders"):
            return httpx.Response(200, json=[{"id": 1}])
        return httpx.Response(200, json=[])
    if request.url.path == "/rest/v1/users":
        return httpx.Response(401)
    return httpx.Response(200, json={})


class TestPermissions:
    """Test permission analysis."""

    def test_shape_check(self, make_jwt):
        assert is_jwt_shaped(make_jwt(sub="u1"))
        assert not is_jwt_shaped("abc.def")
        assert not is_jwt_shaped("a..c")
        assert not is_jwt_shaped(None)

    def test_few_endpoints_no_findings(self):
        results = [EndpointResult(endpoint="/api/users", status=200, accessible=True)]
        assert analyze_permissions(results) == []

    def test_admin_access(self):
        results = [EndpointResult(endpoint="/api/admin", status=200, accessible=True)]
        findings = analyze_permissions(results)
        assert [f.type for f in findings] == ["admin_access"]


class TestAuthenticatedAnalysis:
    """Test the token-driven probe."""

    async def test_no_token(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            analysis = await authenticated_analysis("https://example.com", None, client)
        assert not analysis.performed

    async def test_malformed_token(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            analysis = await authenticated_analysis("https://example.com", "not-a-jwt", client)
        assert analysis.performed
        assert not analysis.jwt_token_valid
        assert analysis.error == "Invalid JWT token format"

    async def test_broad_token(self, make_jwt):
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            analysis = await authenticated_analysis("https://example.com", make_jwt(sub="u1"), client)

        assert analysis.jwt_token_valid
        assert len(analysis.tested_endpoints) == 5
        assert analysis.accessible_endpoints == 4
        assert {f.type for f in analysis.permission_findings} == {"excessive_access", "admin_access"}

    async def test_readable_tables_with_credential(self, make_jwt, anon_key):
        credential = BackendCredential(
            endpoint_url="https://abcd1234.supabase.co",
            api_key=anon_key,
            project_id="abcd1234",
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            analysis = await authenticated_analysis(
                "https://example.com",
                make_jwt(sub="u1"),
                client,
                credential=credential,
                tables=["orders", "profiles"],
                batch_pause=0,
            )

        assert analysis.readable_tables == ["orders"]
