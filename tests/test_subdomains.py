"""Tests for subdomain discovery."""

import httpx

from site_scanner.subdomains import (
    COMMON_SUBDOMAINS,
    base_domain,
    build_candidates,
    discover_subdomains,
    query_ct_logs,
)


class TestCandidates:
    """Test candidate generation."""

    def test_base_domain(self):
        assert base_domain("https://www.example.com/path") == "example.com"
        assert base_domain("example.com") == "example.com"

    def test_wordlist_candidates(self):
        candidates = build_candidates("example.com")
        assert len(candidates) == len(COMMON_SUBDOMAINS)
        assert "api.example.com" in candidates

    def test_extra_names_deduplicated_and_capped(self):
        extra = ["api.example.com", "example.com"] + [f"h{i}.example.com" for i in range(50)]
        candidates = build_candidates("example.com", extra, limit=40)
        assert len(candidates) == 40
        assert len(set(candidates)) == 40
        assert "example.com" not in candidates


class TestCertificateLogs:
    """Test the crt.sh lookup."""

    async def test_parses_names(self):
        entries = [
            {"name_value": "shop.example.com\n*.example.com"},
            {"name_value": "shop.example.com"},
            {"name_value": "other.org"},
        ]
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=entries))) as client:
            names = await query_ct_logs("example.com", client)

        assert names == ["shop.example.com"]

    async def test_failure_yields_nothing(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502))) as client:
            assert await query_ct_logs("example.com", client) == []


class TestDiscover:
    """Test the liveness sweep."""

    async def test_keeps_hosts_that_answer(self):
        def handler(request: httpx.Request) -> httpx.Response:
            host = request.url.host
            if host == "api.example.com":
                return httpx.Response(200)
            if host == "admin.example.com":
                if request.method == "HEAD":
                    return httpx.Response(405)
                return httpx.Response(403)
            raise httpx.ConnectError("unreachable", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            analysis = await discover_subdomains("https://www.example.com", client, use_ct_logs=False)

        live = {result.subdomain: result for result in analysis.live_subdomains}
        assert analysis.domain == "example.com"
        assert analysis.candidates_checked == len(COMMON_SUBDOMAINS)
        assert analysis.total_found == 2
        assert live["api.example.com"].accessible
        assert not live["admin.example.com"].accessible
        assert live["admin.example.com"].status == 403
        assert analysis.scan_method == "wordlist"
