"""FastAPI application for the website security scanner."""

import asyncio
import hmac
import logging
from typing import Optional, Union

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .analysis import AnalysisProvider, analyze_report, provider_from_settings
from .config import Settings
from .errors import (
    AnalysisUnavailable,
    AuthorizationRequired,
    FetchError,
    ScanNotFound,
    ScanRecordLocked,
    SchemaError,
    StepOrderError,
)
from .fetcher import ClientFactory, create_client, is_dns_failure, normalize_target
from .gating import (
    AccessPolicy,
    Identity,
    OpenAccessPolicy,
    PaymentRequiredPolicy,
    PlanResolver,
    QuotaGate,
    StaticPlanResolver,
    identity_for,
    is_paid,
    require_paid_plan,
)
from .models import (
    PRIVATE_REQUEST_FIELDS,
    AnalysisInput,
    BackendAnalysis,
    BackendScanInput,
    DeepScanSubmission,
    DeepScanSummary,
    FreeScanInput,
    FreeScanReport,
    QuickScanInput,
    QuickScanReport,
    SecurityAnalysis,
    StepTrigger,
)
from .orchestrator import HttpStepScheduler, InProcessScheduler, ScanOrchestrator, StepScheduler
from .scanner import analyze_backend, find_site_credential, quick_scan
from .scanners import resolve_credential
from .scorer import free_view, summarize_results
from .store import InMemoryQuotaStore, InMemoryScanStore, QuotaStore, ScanStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BLOCKING_STATUSES = (401, 403, 429)


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def _default_scheduler(settings: Settings) -> StepScheduler:
    # The HTTP trigger is only usable when the step endpoint can authenticate it.
    if settings.service_key:
        return HttpStepScheduler(settings.api_url, settings.service_key, delay=settings.step_delay)
    return InProcessScheduler(delay=settings.step_delay)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ScanStore] = None,
    quota_store: Optional[QuotaStore] = None,
    plan_resolver: Optional[PlanResolver] = None,
    policy: Optional[AccessPolicy] = None,
    client_factory: Optional[ClientFactory] = None,
    scheduler: Optional[StepScheduler] = None,
    analysis_provider: Optional[AnalysisProvider] = None,
) -> FastAPI:
    """Build the application. Every collaborator can be replaced, which is how tests wire fakes in."""
    settings = settings or Settings.from_env()
    client_factory = client_factory or (lambda: create_client(settings))
    plan_resolver = plan_resolver or StaticPlanResolver()
    analysis_provider = analysis_provider or provider_from_settings(settings)
    if policy is None:
        policy = PaymentRequiredPolicy() if settings.require_payment else OpenAccessPolicy()

    quota = QuotaGate(
        quota_store or InMemoryQuotaStore(),
        anonymous_limit=settings.anonymous_scan_limit,
        authenticated_limit=settings.authenticated_scan_limit,
        window=settings.quota_window,
    )
    orchestrator = ScanOrchestrator(
        store or InMemoryScanStore(),
        settings=settings,
        scheduler=scheduler or _default_scheduler(settings),
        policy=policy,
        client_factory=client_factory,
    )

    app = FastAPI(
        title="Site Scanner",
        description="Website security scanner: leaked secrets, security headers, Supabase RLS exposure and subdomains",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.quota = quota
    app.state.analysis_provider = analysis_provider

    # CORS - allow common development origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://localhost:8000",
        ],
        allow_methods=["POST", "GET"],
        allow_headers=["*"],
    )

    def identify(request: Request) -> tuple[Identity, Optional[str]]:
        token = _bearer_token(request)
        identity = identity_for(token, _client_ip(request), settings.ip_salt)
        if identity is None:
            raise _error(401, "identity_required", "Could not identify the caller")
        return identity, token

    async def consume_quota(identity: Identity, token: Optional[str]) -> None:
        if token and is_paid(await plan_resolver.plan_for(token)):
            return
        if not await quota.consume(identity):
            raise _error(
                429,
                "rate_limit_exceeded",
                f"Scan limit reached ({quota.limit_for(identity)} scans). Try again later.",
            )

    async def run_quick_scan(
        request: Request,
        raw_url: str,
        check_rls: bool,
        check_auth: bool,
    ) -> Union[QuickScanReport, JSONResponse]:
        try:
            url = normalize_target(raw_url)
        except ValueError as e:
            raise _error(400, "invalid_url", str(e))

        identity, token = identify(request)
        await consume_quota(identity, token)

        try:
            async with client_factory() as client:
                return await asyncio.wait_for(
                    quick_scan(url, client, settings, check_rls=check_rls, check_auth=check_auth),
                    timeout=settings.quick_scan_budget,
                )
        except FetchError as e:
            if is_dns_failure(e):
                raise _error(404, "domain_not_found", f"Could not resolve {url}")
            if e.status_code in BLOCKING_STATUSES:
                logger.info(f"{url} refused the scan with HTTP {e.status_code}")
                return JSONResponse(
                    status_code=200,
                    content={
                        "error": "blocked_by_website",
                        "message": "The website blocked our scanner. It may be protected by a firewall or bot detection.",
                        "status": e.status_code,
                    },
                )
            logger.error(f"Quick scan of {url} failed: {e}")
            raise _error(500, "scan_failed", "Could not fetch the website")
        except asyncio.TimeoutError:
            logger.error(f"Quick scan of {url} exceeded {settings.quick_scan_budget}s")
            raise _error(500, "scan_timeout", "The scan took too long to complete")

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/scan")
    async def scan(body: QuickScanInput, request: Request):
        """Quick scan: headers, leaked secrets and unprotected auth pages."""
        try:
            return await run_quick_scan(request, body.url, body.check_rls, body.check_auth_pages)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Scan failed: {e}")
            raise _error(500, "scan_failed", "An unexpected error occurred")

    @app.post("/free-scan", response_model=None)
    async def free_scan(body: FreeScanInput, request: Request) -> Union[FreeScanReport, JSONResponse]:
        """Quick scan reduced to a score, counts and flags."""
        try:
            report = await run_quick_scan(request, body.url, check_rls=True, check_auth=True)
            if isinstance(report, JSONResponse):
                return report
            return free_view(report)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Free scan failed: {e}")
            raise _error(500, "scan_failed", "An unexpected error occurred")

    @app.get("/scan-status")
    async def scan_status(request: Request):
        """Remaining quick scans for the caller."""
        identity, _ = identify(request)
        used = await quota.used(identity)
        return {
            "scans_remaining": await quota.remaining(identity),
            "is_authenticated": identity.is_authenticated,
            "total_allowed_scans": quota.limit_for(identity),
            "used_scans": used,
        }

    @app.post("/supabase-deep-scan", response_model=BackendAnalysis)
    async def supabase_deep_scan(body: BackendScanInput, request: Request) -> BackendAnalysis:
        """Enumerate a Supabase project's tables and probe each one for anonymous reads."""
        token = _bearer_token(request)
        if not token:
            raise _error(401, "unauthorized", "Authentication required")
        try:
            await require_paid_plan(plan_resolver, token)
        except AuthorizationRequired as e:
            raise _error(403, "subscription_required", str(e))

        try:
            async with client_factory() as client:
                if body.supabase_url and body.supabase_key:
                    credential = resolve_credential(body.supabase_url, body.supabase_key)
                    if credential is None or not credential.project_id:
                        raise _error(400, "invalid_url", "Could not read a project id from the Supabase URL")
                elif body.domain:
                    try:
                        url = normalize_target(body.domain)
                    except ValueError as e:
                        raise _error(400, "invalid_url", str(e))
                    try:
                        credential = await find_site_credential(url, client, settings)
                    except FetchError as e:
                        if is_dns_failure(e):
                            raise _error(404, "domain_not_found", f"Could not resolve {url}")
                        logger.warning(f"Could not fetch {url} for credential discovery: {e}")
                        credential = None
                    if credential is None:
                        raise _error(404, "credentials_not_found", "No Supabase credentials found on the website")
                else:
                    raise _error(400, "invalid_input", "Provide a domain or a Supabase URL and key")

                try:
                    analysis = await analyze_backend(credential, client, settings)
                except SchemaError as e:
                    logger.error(f"Schema discovery failed for {credential.project_id}: {e}")
                    raise _error(503, "schema_unavailable", "Could not read the database schema")

            if not analysis.tables:
                raise _error(404, "no_tables", "No tables were found in the database schema")
            return analysis
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Supabase deep scan failed: {e}")
            raise _error(500, "scan_failed", "An unexpected error occurred")

    @app.post("/deep-scan", status_code=202)
    async def deep_scan(body: DeepScanSubmission):
        """Create a deep-scan request and start it."""
        try:
            url = normalize_target(body.url)
        except ValueError as e:
            raise _error(400, "invalid_url", str(e))

        record = await orchestrator.submit(
            url,
            auth_token=body.auth_token,
            supabase_url=body.supabase_url,
            supabase_key=body.supabase_key,
        )
        try:
            record = await orchestrator.start(record.id)
        except AuthorizationRequired as e:
            raise HTTPException(
                status_code=403,
                detail={"error": "payment_required", "message": str(e), "request_id": record.id},
            )
        return {"request_id": record.id, "status": record.status.value}

    async def run_step_in_background(request_id: str, step: int) -> None:
        try:
            await orchestrator.run_step(request_id, step)
        except (StepOrderError, ScanNotFound) as e:
            logger.warning(f"Step {step} of scan {request_id} rejected: {e}")

    @app.post("/deep-scan/steps", status_code=202)
    async def deep_scan_step(body: StepTrigger, request: Request, background_tasks: BackgroundTasks):
        """Internal trigger for one deep-scan step. Step 0 starts the scan."""
        token = _bearer_token(request) or ""
        if not settings.service_key or not hmac.compare_digest(token.encode(), settings.service_key.encode()):
            raise _error(401, "unauthorized", "Invalid service key")
        if not body.scan_request_id:
            raise _error(400, "invalid_input", "scan_request_id is required")

        request_id = body.scan_request_id
        try:
            record = await orchestrator.store.get(request_id)
            if body.step == 0:
                record = await orchestrator.start(request_id)
            else:
                background_tasks.add_task(run_step_in_background, request_id, body.step)
        except ScanNotFound:
            raise _error(404, "not_found", f"Scan request {request_id} not found")
        except AuthorizationRequired as e:
            raise _error(403, "payment_required", str(e))
        except (ScanRecordLocked, StepOrderError) as e:
            raise _error(400, "invalid_state", str(e))

        return {"request_id": request_id, "step": body.step, "status": record.status.value}

    @app.get("/deep-scan/{request_id}")
    async def get_deep_scan(request_id: str):
        """Full record with credentials left out."""
        try:
            record = await orchestrator.store.get(request_id)
        except ScanNotFound:
            raise _error(404, "not_found", f"Scan request {request_id} not found")
        return record.model_dump(mode="json", exclude=PRIVATE_REQUEST_FIELDS)

    @app.get("/deep-scan/{request_id}/summary", response_model=DeepScanSummary)
    async def get_deep_scan_summary(request_id: str) -> DeepScanSummary:
        try:
            record = await orchestrator.store.get(request_id)
        except ScanNotFound:
            raise _error(404, "not_found", f"Scan request {request_id} not found")
        return summarize_results(record)

    @app.post("/ai-security-analysis", response_model=SecurityAnalysis)
    async def ai_security_analysis(body: AnalysisInput, request: Request) -> SecurityAnalysis:
        """AI-written assessment and recommendations for a deep scan or inline report."""
        if not _bearer_token(request):
            raise _error(401, "unauthorized", "Authentication required")

        if body.scan_request_id:
            try:
                record = await orchestrator.store.get(body.scan_request_id)
            except ScanNotFound:
                raise _error(404, "not_found", f"Scan request {body.scan_request_id} not found")
            results = record.results.model_dump(mode="json")
        elif body.scan_results:
            results = body.scan_results
        else:
            raise _error(400, "invalid_input", "Provide a scan_request_id or scan_results")

        try:
            return await analyze_report(results, analysis_provider)
        except AnalysisUnavailable as e:
            logger.error("AI analysis requested but no provider is configured")
            raise _error(503, "analysis_unavailable", str(e))
        except ValueError as e:
            raise _error(400, "invalid_input", str(e))
        except Exception as e:
            logger.error(f"AI analysis failed: {e}")
            raise _error(500, "analysis_failed", "Failed to generate AI recommendations")

    return app


app = create_app()
