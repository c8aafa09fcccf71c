"""Scoring and report summaries."""

import math
from typing import Sequence

from .headers import SECURITY_HEADERS
from .models import (
    DeepScanSummary,
    Finding,
    FreeScanReport,
    HeaderAudit,
    QuickScanReport,
    RiskSummary,
    ScanRequest,
    ScanResults,
    Severity,
    TableSchema,
)

MISSING_HEADER_PENALTY = 5
LEAK_PENALTY = 15

HEADER_PENALTY_CAP = 40
LEAK_PENALTY_CAP = 60
EXPOSURE_PENALTY = 25


def _counted(findings: Sequence[Finding]) -> int:
    return sum(1 for f in findings if f.severity != Severity.secure)


def _clamp(score: float) -> int:
    return max(0, min(100, int(score)))


def quick_score(audit: HeaderAudit, findings: Sequence[Finding]) -> int:
    """100, minus 5 per missing header and 15 per finding."""
    score = 100 - MISSING_HEADER_PENALTY * len(audit.missing) - LEAK_PENALTY * _counted(findings)
    return _clamp(score)


def weighted_score(
    audit: HeaderAudit,
    findings: Sequence[Finding],
    tables: Sequence[TableSchema] = (),
) -> int:
    """Deep-scan score with capped header and leak penalties.

    Missing headers cost up to 40 points in proportion, findings 15 each up
    to 60, and any publicly readable table a further 25.
    """
    header_penalty = len(audit.missing) / len(SECURITY_HEADERS) * HEADER_PENALTY_CAP
    leak_penalty = min(LEAK_PENALTY * _counted(findings), LEAK_PENALTY_CAP)
    exposure_penalty = EXPOSURE_PENALTY if any(t.is_public for t in tables) else 0
    return _clamp(math.floor(100 - header_penalty - leak_penalty - exposure_penalty))


def risk_summary(results: ScanResults) -> RiskSummary:
    """Count issues by severity across every section that ran."""
    summary = RiskSummary()

    def add(severity: Severity, count: int = 1) -> None:
        if severity != Severity.secure:
            setattr(summary, severity.value, getattr(summary, severity.value) + count)

    if results.security_headers and not results.security_headers.error:
        add(Severity.low, len(results.security_headers.missing))
    if results.api_keys_and_leaks:
        for finding in results.api_keys_and_leaks.leaks_found:
            add(finding.severity)
    if results.backend_analysis:
        add(Severity.critical, sum(1 for t in results.backend_analysis.tables if t.is_public))
    if results.authenticated_analysis:
        for finding in results.authenticated_analysis.permission_findings:
            add(finding.severity)
    return summary


def score_results(results: ScanResults) -> ScanResults:
    """Recompute ``overall_score`` and ``risk_summary`` from the sections present.

    The score stays None until both the header audit and secret detection
    have completed without error.
    """
    headers = results.security_headers
    leaks = results.api_keys_and_leaks
    results.risk_summary = risk_summary(results)

    if not headers or headers.error or not leaks or leaks.error:
        results.overall_score = None
        return results

    tables = results.backend_analysis.tables if results.backend_analysis else []
    results.overall_score = weighted_score(headers, leaks.leaks_found, tables)
    return results


def free_view(report: QuickScanReport) -> FreeScanReport:
    """Reduce a quick-scan report to flags and counts."""
    critical = sum(1 for f in report.leaks if f.severity in (Severity.critical, Severity.high))
    medium = sum(1 for f in report.leaks if f.severity == Severity.medium)
    low = sum(1 for f in report.leaks if f.severity == Severity.low)
    rls = report.rls_vulnerability

    view = FreeScanReport(
        url=report.url,
        security_score=report.score,
        has_critical_issues=critical > 0,
        has_medium_issues=medium > 0,
        has_low_issues=low > 0,
        has_rls_vulnerability=bool(rls and rls.is_rls_vulnerable),
        critical_issues_count=critical,
        medium_issues_count=medium,
        low_issues_count=low,
    )

    if view.has_rls_vulnerability:
        view.rls_message = (
            f"CRITICAL: Your Supabase database has {len(rls.vulnerable_tables)} tables without proper "
            "Row Level Security (RLS)! Sign up to see which tables are at risk."
        )

    if view.has_critical_issues:
        view.message = (
            f"Critical security issues detected! {critical} critical vulnerabilities found. "
            "Sign up to see details and fix them."
        )
    elif view.has_medium_issues:
        view.message = f"Medium security risks detected. {medium} issues found. Sign up to see details and fix them."
    elif view.has_low_issues:
        view.message = f"Minor security concerns found. {low} issues found. Sign up to see details and fix them."
    else:
        view.message = "No significant issues detected. Sign up for comprehensive security monitoring."
    return view


def summarize_results(record: ScanRequest) -> DeepScanSummary:
    """Counts-only view of a deep-scan record."""
    results = record.results
    sections = {
        "security_headers": results.security_headers,
        "api_keys_and_leaks": results.api_keys_and_leaks,
        "backend_analysis": results.backend_analysis,
        "subdomain_analysis": results.subdomain_analysis,
        "authenticated_analysis": results.authenticated_analysis,
    }
    backend = results.backend_analysis

    return DeepScanSummary(
        request_id=record.id,
        status=record.status,
        overall_score=results.overall_score,
        risk_summary=results.risk_summary,
        missing_headers_count=len(results.security_headers.missing) if results.security_headers else 0,
        leaks_count=len(results.api_keys_and_leaks.leaks_found) if results.api_keys_and_leaks else 0,
        supabase_detected=bool(backend and backend.supabase_detected),
        public_tables_count=backend.summary.public_tables if backend else 0,
        live_subdomains_count=results.subdomain_analysis.total_found if results.subdomain_analysis else 0,
        sections_with_errors=[name for name, section in sections.items() if section is not None and section.error],
    )
