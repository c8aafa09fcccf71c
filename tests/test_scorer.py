"""Tests for scoring and summaries."""

from datetime import datetime, timezone

from site_scanner.headers import audit
from site_scanner.models import (
    AuthenticatedAnalysis,
    BackendAnalysis,
    Finding,
    HeaderAudit,
    LeakAnalysis,
    PermissionFinding,
    QuickScanReport,
    RlsCheck,
    ScanRequest,
    ScanResults,
    ScanStatus,
    SecurityHeadersSection,
    Severity,
    TableSchema,
)
from site_scanner.scorer import free_view, quick_score, risk_summary, score_results, summarize_results, weighted_score


def _finding(severity: Severity, preview: str = "x") -> Finding:
    return Finding(type="Test", preview=preview, details="", severity=severity)


class TestQuickScore:
    """Test the quick-scan score."""

    def test_perfect_site(self):
        all_present = HeaderAudit(present=["a"] * 7, missing=[])
        assert quick_score(all_present, []) == 100

    def test_penalties(self):
        result = audit({})
        assert quick_score(result, []) == 65
        assert quick_score(result, [_finding(Severity.high)]) == 50

    def test_secure_findings_are_free(self):
        result = audit({})
        assert quick_score(result, [_finding(Severity.secure)]) == 65

    def test_never_below_zero(self):
        findings = [_finding(Severity.critical, str(i)) for i in range(20)]
        assert quick_score(audit({}), findings) == 0


class TestWeightedScore:
    """Test the deep-scan score."""

    def test_header_penalty_capped(self):
        assert weighted_score(audit({}), []) == 60

    def test_leak_penalty_capped(self):
        findings = [_finding(Severity.critical, str(i)) for i in range(10)]
        full = HeaderAudit(present=["a"] * 7, missing=[])
        assert weighted_score(full, findings) == 40

    def test_public_table_penalty(self):
        full = HeaderAudit(present=["a"] * 7, missing=[])
        tables = [TableSchema(name="profiles", is_public=True)]
        assert weighted_score(full, [], tables) == 75

    def test_bounds(self):
        findings = [_finding(Severity.critical, str(i)) for i in range(10)]
        tables = [TableSchema(name="t", is_public=True)]
        score = weighted_score(audit({}), findings, tables)
        assert 0 <= score <= 100
        assert score == 0


class TestResults:
    """Test aggregate scoring over deep-scan results."""

    def test_score_requires_headers_and_leaks(self):
        results = ScanResults(security_headers=SecurityHeadersSection(missing=["x-frame-options"]))
        score_results(results)
        assert results.overall_score is None

    def test_score_none_when_section_errored(self):
        results = ScanResults(
            security_headers=SecurityHeadersSection(error="Could not fetch"),
            api_keys_and_leaks=LeakAnalysis(error="Could not fetch"),
        )
        score_results(results)
        assert results.overall_score is None
        assert results.risk_summary.low == 0

    def test_risk_summary_counts(self):
        results = ScanResults(
            security_headers=SecurityHeadersSection(missing=["x-frame-options", "referrer-policy"]),
            api_keys_and_leaks=LeakAnalysis(
                leaks_found=[_finding(Severity.critical, "a"), _finding(Severity.medium, "b"), _finding(Severity.secure, "c")]
            ),
            backend_analysis=BackendAnalysis(tables=[TableSchema(name="users", is_public=True), TableSchema(name="posts")]),
            authenticated_analysis=AuthenticatedAnalysis(
                permission_findings=[PermissionFinding(type="admin_access", severity=Severity.high, message="m")]
            ),
        )
        summary = risk_summary(results)
        assert summary.critical == 2
        assert summary.high == 1
        assert summary.medium == 1
        assert summary.low == 2

        score_results(results)
        assert results.overall_score is not None
        assert 0 <= results.overall_score <= 100

    def test_summary_lists_errored_sections(self):
        record = ScanRequest(
            id="r1",
            url="https://example.com",
            status=ScanStatus.completed,
            created_at=datetime.now(timezone.utc),
        )
        record.results.security_headers = SecurityHeadersSection(missing=["x-frame-options"])
        record.results.backend_analysis = BackendAnalysis(error="schema unavailable")
        summary = summarize_results(record)

        assert summary.request_id == "r1"
        assert summary.missing_headers_count == 1
        assert summary.sections_with_errors == ["backend_analysis"]
        assert summary.supabase_detected is False


class TestFreeView:
    """Test the reduced free-scan report."""

    def _report(self, leaks, rls=None) -> QuickScanReport:
        return QuickScanReport(
            url="https://example.com",
            headers=audit({}),
            leaks=leaks,
            score=50,
            rls_vulnerability=rls,
            scanned_at=datetime.now(timezone.utc),
        )

    def test_critical_message(self):
        view = free_view(self._report([_finding(Severity.high)]))
        assert view.has_critical_issues
        assert view.critical_issues_count == 1
        assert view.message.startswith("Critical security issues detected!")

    def test_clean_site_message(self):
        view = free_view(self._report([_finding(Severity.secure)]))
        assert not view.has_critical_issues
        assert view.message == "No significant issues detected. Sign up for comprehensive security monitoring."

    def test_rls_message(self):
        rls = RlsCheck(is_rls_vulnerable=True, vulnerable_tables=["users", "orders"])
        view = free_view(self._report([], rls))
        assert view.has_rls_vulnerability
        assert "2 tables" in view.rls_message
