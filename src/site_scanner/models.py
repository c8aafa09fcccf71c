"""Pydantic models for site-scanner requests, findings and reports."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Severity levels for findings."""

    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"
    secure = "secure"


class ScanStatus(str, Enum):
    """Lifecycle of a deep-scan request."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = frozenset({ScanStatus.completed, ScanStatus.failed})


class PaymentStatus(str, Enum):
    """Authorization state of a deep-scan request, owned by an external collaborator."""

    pending = "pending"
    completed = "completed"
    failed = "failed"


# ---------------------------------------------------------------------------
# Fetched content
# ---------------------------------------------------------------------------


class FetchResult(BaseModel):
    """A fetched document after redirects."""

    url: str
    final_url: str
    status_code: int
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers, names lower-cased")
    body: str = ""
    truncated: bool = False


class ScriptInventory(BaseModel):
    """Scripts referenced by an HTML page."""

    urls: list[str] = Field(default_factory=list)
    inline: list[str] = Field(default_factory=list)


class SiteContent(BaseModel):
    """Everything fetched for one target: the page and its scripts."""

    page: FetchResult
    inline_scripts: list[str] = Field(default_factory=list)
    scripts: dict[str, str] = Field(default_factory=dict, description="Linked script bodies keyed by URL")
    script_urls: list[str] = Field(default_factory=list, description="Linked scripts that were attempted")
    failed_scripts: list[str] = Field(default_factory=list)

    def documents(self) -> list[str]:
        """Return the page body, inline scripts and fetched scripts, in that order."""
        return [self.page.body, *self.inline_scripts, *self.scripts.values()]


# ---------------------------------------------------------------------------
# Findings and per-section results
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """One detected secret or leak. Never carries the raw secret value."""

    type: str = Field(description="Category tag, e.g. 'AWS Key' or 'JWT Token'")
    preview: str = Field(description="Short redacted form, safe to display")
    details: str = Field(description="Context snippet with the secret masked")
    severity: Severity = Field(default=Severity.medium)


class HeaderAudit(BaseModel):
    """Present and missing security headers from the canonical set."""

    present: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class SecurityHeadersSection(HeaderAudit):
    """Header audit as stored in a deep-scan report."""

    score: int = Field(default=0, description="Percentage of canonical headers present")
    recommendations: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class AuthPageCheck(BaseModel):
    """Login/signup pages found on the site and their CAPTCHA protection."""

    found: list[str] = Field(default_factory=list)
    protected: list[str] = Field(default_factory=list)
    unprotected: list[str] = Field(default_factory=list)


class LeakAnalysis(BaseModel):
    """The api_keys_and_leaks section of a report."""

    leaks_found: list[Finding] = Field(default_factory=list)
    js_files_scanned: int = 0
    failed_scripts: list[str] = Field(default_factory=list)
    auth_pages: Optional[AuthPageCheck] = None
    error: Optional[str] = None


class ColumnInfo(BaseModel):
    """A table column recovered from the backend's API description."""

    name: str
    type: str = "unknown"
    nullable: bool = True
    description: str = ""


class TableSchema(BaseModel):
    """One discovered backend table and its access-control verdict."""

    name: str
    columns: list[ColumnInfo] = Field(default_factory=list)
    is_public: bool = Field(default=False, description="True only if an anonymous read returned rows")
    rls_enabled: bool = Field(default=False, description="True when anonymous reads were refused or came back empty")
    error_message: Optional[str] = None


class ProbeVerdict(BaseModel):
    """Outcome of one anonymous read against a table."""

    is_public: bool = False
    rls_enabled: bool = False
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    rows_returned: int = 0


class TableSummary(BaseModel):
    """Counts over a probed table list."""

    total_tables: int = 0
    public_tables: int = 0
    protected_tables: int = 0
    error_tables: int = 0


class BackendAnalysis(BaseModel):
    """Supabase detection, schema and RLS probe results."""

    supabase_detected: bool = False
    supabase_url: Optional[str] = None
    project_id: Optional[str] = None
    credential_source: Optional[str] = Field(
        default=None, description="'direct' when supplied by the caller, 'extracted' when found in page content"
    )
    tables: list[TableSchema] = Field(default_factory=list)
    summary: TableSummary = Field(default_factory=TableSummary)
    message: Optional[str] = None
    error: Optional[str] = None
    scanned_at: Optional[datetime] = None
    scan_time_ms: int = 0


class RlsCheck(BaseModel):
    """Quick-scan probe of well-known table names."""

    is_rls_vulnerable: bool = False
    vulnerable_tables: list[str] = Field(default_factory=list)
    message: str = ""


class SubdomainResult(BaseModel):
    """Liveness check of one candidate subdomain."""

    subdomain: str
    status: int = 0
    accessible: bool = False
    error: Optional[str] = None


class SubdomainAnalysis(BaseModel):
    """The subdomain_analysis section of a report."""

    domain: str = ""
    candidates_checked: int = 0
    live_subdomains: list[SubdomainResult] = Field(default_factory=list)
    total_found: int = 0
    scan_method: str = "wordlist"
    error: Optional[str] = None


class EndpointResult(BaseModel):
    """One endpoint requested with the caller's token."""

    endpoint: str
    status: int = 0
    accessible: bool = False
    error: Optional[str] = None


class PermissionFinding(BaseModel):
    """An observation about what the caller's token can reach."""

    type: str
    severity: Severity
    message: str


class AuthenticatedAnalysis(BaseModel):
    """The authenticated_analysis section of a report."""

    performed: bool = False
    jwt_token_valid: bool = False
    tested_endpoints: list[EndpointResult] = Field(default_factory=list)
    accessible_endpoints: int = 0
    readable_tables: list[str] = Field(default_factory=list)
    permission_findings: list[PermissionFinding] = Field(default_factory=list)
    error: Optional[str] = None


class RiskSummary(BaseModel):
    """Issue counts per severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class ScanMetadata(BaseModel):
    """Step bookkeeping for a deep scan."""

    url: str = ""
    scan_type: str = "deep_scan"
    has_auth_token: bool = False
    started_at: Optional[datetime] = None
    step: int = 0
    steps_completed: dict[str, datetime] = Field(default_factory=dict)
    step_errors: dict[str, str] = Field(default_factory=dict)
    scan_status: Optional[str] = None
    total_duration_ms: Optional[int] = None


class ScanResults(BaseModel):
    """Mutable aggregate attached to a scan request, filled in step by step.

    A section left as None has not run yet; a section with ``error`` set ran
    and failed.
    """

    security_headers: Optional[SecurityHeadersSection] = None
    api_keys_and_leaks: Optional[LeakAnalysis] = None
    backend_analysis: Optional[BackendAnalysis] = None
    subdomain_analysis: Optional[SubdomainAnalysis] = None
    authenticated_analysis: Optional[AuthenticatedAnalysis] = None
    scan_metadata: ScanMetadata = Field(default_factory=ScanMetadata)
    overall_score: Optional[int] = Field(default=None, ge=0, le=100)
    risk_summary: RiskSummary = Field(default_factory=RiskSummary)


class BackendCredential(BaseModel):
    """A Supabase endpoint and the key to call it with."""

    endpoint_url: str
    api_key: str
    project_id: Optional[str] = None
    source: str = "extracted"


class ScanRequest(BaseModel):
    """Persisted deep-scan job. Owned by the orchestrator."""

    id: str
    url: str
    auth_token: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    discovered_credential: Optional[BackendCredential] = None
    status: ScanStatus = ScanStatus.pending
    payment_status: PaymentStatus = PaymentStatus.pending
    created_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    results: ScanResults = Field(default_factory=ScanResults)


# Fields of ScanRequest that never leave the service.
PRIVATE_REQUEST_FIELDS = {"auth_token", "supabase_key", "discovered_credential"}


# ---------------------------------------------------------------------------
# Quick scan reports
# ---------------------------------------------------------------------------


class QuickScanReport(BaseModel):
    """Result of a synchronous quick scan."""

    url: str
    headers: HeaderAudit = Field(default_factory=HeaderAudit)
    leaks: list[Finding] = Field(default_factory=list)
    js_files_scanned: int = 0
    supabase_detected: bool = False
    rls_vulnerability: Optional[RlsCheck] = None
    auth_pages: Optional[AuthPageCheck] = None
    score: int = Field(default=0, ge=0, le=100)
    scanned_at: datetime


class FreeScanReport(BaseModel):
    """Reduced view of a quick scan: flags and counts, no details."""

    url: str
    security_score: int
    has_critical_issues: bool = False
    has_medium_issues: bool = False
    has_low_issues: bool = False
    has_rls_vulnerability: bool = False
    critical_issues_count: int = 0
    medium_issues_count: int = 0
    low_issues_count: int = 0
    message: str = ""
    rls_message: Optional[str] = None


class DeepScanSummary(BaseModel):
    """Reduced view of a deep-scan record."""

    request_id: str
    status: ScanStatus
    overall_score: Optional[int] = None
    risk_summary: RiskSummary = Field(default_factory=RiskSummary)
    missing_headers_count: int = 0
    leaks_count: int = 0
    supabase_detected: bool = False
    public_tables_count: int = 0
    live_subdomains_count: int = 0
    sections_with_errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# AI analysis
# ---------------------------------------------------------------------------


class AnalysisRecommendation(BaseModel):
    priority: Literal["high", "medium", "low"] = "medium"
    issue: str
    solution: str


class SecurityAnalysis(BaseModel):
    """Model-written assessment of a scan report."""

    severity: Literal["low", "medium", "high", "critical"] = "medium"
    summary: str
    key_findings: list[str] = Field(default_factory=list)
    recommendations: list[AnalysisRecommendation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API request bodies
# ---------------------------------------------------------------------------


class QuickScanInput(BaseModel):
    """Request body for a quick scan."""

    url: str = Field(description="URL of the site to scan")
    check_rls: bool = Field(default=False, description="Probe well-known tables when Supabase credentials are found")
    check_auth_pages: bool = Field(default=True, description="Check login/signup pages for CAPTCHA")


class FreeScanInput(BaseModel):
    """Request body for the free, reduced scan."""

    url: str = Field(description="URL of the site to scan")


class BackendScanInput(BaseModel):
    """Request body for a Supabase deep scan."""

    domain: Optional[str] = Field(default=None, description="Site to search for Supabase credentials")
    supabase_url: Optional[str] = Field(default=None, description="Project URL, used with supabase_key")
    supabase_key: Optional[str] = Field(default=None, description="Anon key, used with supabase_url")


class DeepScanSubmission(BaseModel):
    """Request body that creates a deep-scan job."""

    url: str = Field(description="URL of the site to scan")
    auth_token: Optional[str] = Field(default=None, description="User JWT for authenticated probing")
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None


class StepTrigger(BaseModel):
    """Internal request to run one step of a deep scan (0 starts the job)."""

    scan_request_id: Optional[str] = None
    step: int = Field(default=0, ge=0, le=4)


class AnalysisInput(BaseModel):
    """A deep-scan id to analyze, or report sections passed inline."""

    scan_request_id: Optional[str] = None
    scan_results: Optional[dict] = Field(default=None, description="Report sections from a previous scan")
