"""Deep-scan state machine.

A deep scan runs four steps against a persisted ScanRequest:

1. fetch the site, audit headers, detect secrets and check auth pages
2. find backend credentials, discover the schema and probe tables
3. enumerate subdomains
4. probe with the caller's token, then finalize

Each step reads the record, fills in its section of the results, persists
the whole record and schedules the next step. A step that fails records an
error in its section and the scan moves on; only problems outside a step
(missing record, store failure) mark the request failed.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import httpx

from . import headers
from .auth_pages import check_auth_pages, unprotected_page_findings
from .auth_probe import authenticated_analysis
from .config import Settings
from .errors import FetchError, SchemaError, ScanNotFound, ScanRecordLocked, StepOrderError
from .fetcher import ClientFactory, create_client, fetch_site_content
from .gating import AccessPolicy, OpenAccessPolicy
from .models import (
    TERMINAL_STATUSES,
    AuthenticatedAnalysis,
    BackendCredential,
    BackendAnalysis,
    LeakAnalysis,
    ScanMetadata,
    ScanRequest,
    ScanStatus,
    SecurityHeadersSection,
    SubdomainAnalysis,
)
from .prober import summarize_tables
from .scanner import analyze_backend, find_site_credential
from .scanners import detect_many, find_credential, resolve_credential
from .scorer import score_results
from .store import ScanStore
from .subdomains import discover_subdomains

logger = logging.getLogger(__name__)

FINAL_STEP = 4

STEP_SECTIONS = {
    1: {"security_headers": SecurityHeadersSection, "api_keys_and_leaks": LeakAnalysis},
    2: {"backend_analysis": BackendAnalysis},
    3: {"subdomain_analysis": SubdomainAnalysis},
    4: {"authenticated_analysis": AuthenticatedAnalysis},
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepScheduler(ABC):
    """Starts a step some time after the previous one persisted its results."""

    def __init__(self, delay: float = 1.0):
        self.delay = delay
        self.orchestrator: Optional["ScanOrchestrator"] = None
        self._tasks: set[asyncio.Task] = set()

    def bind(self, orchestrator: "ScanOrchestrator") -> None:
        self.orchestrator = orchestrator

    async def schedule(self, request_id: str, step: int) -> None:
        """Fire and continue: the step runs in a background task."""
        task = asyncio.create_task(self._deliver_later(request_id, step))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver_later(self, request_id: str, step: int) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        try:
            await self.deliver(request_id, step)
        except Exception as e:
            logger.exception(f"Could not run step {step} of scan {request_id}")
            if self.orchestrator:
                await self.orchestrator.fail(request_id, f"Step {step} could not be started: {e.__class__.__name__}")

    @abstractmethod
    async def deliver(self, request_id: str, step: int) -> None:
        """Run or trigger the step."""

    async def drain(self) -> None:
        """Wait until every scheduled step, and the steps they schedule, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class InProcessScheduler(StepScheduler):
    """Runs the next step in this process."""

    async def deliver(self, request_id: str, step: int) -> None:
        if self.orchestrator is None:
            raise RuntimeError("InProcessScheduler must be bound to an orchestrator")
        await self.orchestrator.run_step(request_id, step)


class HttpStepScheduler(StepScheduler):
    """Triggers the next step through the service's own step endpoint.

    Calls are authenticated with the shared service key, so any replica
    behind ``api_url`` can pick the step up.
    """

    def __init__(
        self,
        api_url: str,
        service_key: Optional[str],
        delay: float = 1.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(delay=delay)
        self.api_url = api_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.transport = transport

    async def deliver(self, request_id: str, step: int) -> None:
        headers = {}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"

        logger.info(f"Triggering step {step} of scan {request_id}")
        async with httpx.AsyncClient(base_url=self.api_url, timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                "/deep-scan/steps",
                json={"scan_request_id": request_id, "step": step},
                headers=headers,
            )
            response.raise_for_status()


class ScanOrchestrator:
    """Creates deep-scan requests and drives them through their steps."""

    def __init__(
        self,
        store: ScanStore,
        settings: Optional[Settings] = None,
        scheduler: Optional[StepScheduler] = None,
        policy: Optional[AccessPolicy] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.scheduler = scheduler or InProcessScheduler(delay=self.settings.step_delay)
        self.scheduler.bind(self)
        self.policy = policy or OpenAccessPolicy()
        self.client_factory = client_factory or (lambda: create_client(self.settings))
        self.steps = {
            1: self._scan_site,
            2: self._scan_backend,
            3: self._scan_subdomains,
            4: self._scan_authenticated,
        }

    async def submit(
        self,
        url: str,
        auth_token: Optional[str] = None,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
    ) -> ScanRequest:
        """Create a pending request. Nothing runs until ``start``."""
        record = ScanRequest(
            id=str(uuid.uuid4()),
            url=url,
            auth_token=auth_token,
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            created_at=_now(),
        )
        record.results.scan_metadata = ScanMetadata(url=url, has_auth_token=bool(auth_token))
        logger.info(f"Created deep scan {record.id} for {url}")
        return await self.store.create(record)

    async def start(self, request_id: str, schedule: bool = True) -> ScanRequest:
        """Check the access policy, mark the request processing and schedule step 1.

        Raises AuthorizationRequired when the policy refuses. Starting a
        request that is already processing is a no-op.
        """
        record = await self.store.get(request_id)
        if record.status == ScanStatus.processing:
            return record
        if record.status in TERMINAL_STATUSES:
            raise ScanRecordLocked(request_id, record.status.value)

        await self.policy.authorize(record)

        record.results.scan_metadata.started_at = _now()
        record = await self.store.update(request_id, status=ScanStatus.processing, results=record.results)
        logger.info(f"Deep scan {request_id} started")
        if schedule:
            await self.scheduler.schedule(request_id, 1)
        return record

    async def run_step(self, request_id: str, step: int, schedule_next: bool = True) -> ScanRequest:
        """Run one step and persist its results.

        Raises ScanNotFound for an unknown id and StepOrderError when the
        scan has not started or the previous step has not completed.
        """
        if step not in self.steps:
            raise StepOrderError(f"Unknown step {step}")

        record = await self.store.get(request_id)
        if record.status in TERMINAL_STATUSES:
            logger.warning(f"Ignoring step {step} for scan {request_id}: already {record.status.value}")
            return record
        if record.status != ScanStatus.processing:
            raise StepOrderError(f"Scan request {request_id} has not been started")

        completed = record.results.scan_metadata.steps_completed
        if f"step_{step}" in completed:
            logger.warning(f"Step {step} of scan {request_id} already ran")
            return record
        if step > 1 and f"step_{step - 1}" not in completed:
            raise StepOrderError(f"Step {step - 1} of scan {request_id} has not completed")

        try:
            record = await self._execute(record, step)
        except ScanRecordLocked:
            logger.warning(f"Scan {request_id} was finalized while step {step} ran")
            return await self.store.get(request_id)
        except Exception as e:
            logger.exception(f"Deep scan {request_id} failed in step {step}")
            failed = await self.fail(request_id, f"Unexpected error in step {step}: {e.__class__.__name__}")
            if failed is None:
                raise ScanNotFound(request_id) from e
            return failed

        if step < FINAL_STEP and schedule_next:
            await self.scheduler.schedule(request_id, step + 1)
        return record

    async def run_all(self, request_id: str) -> ScanRequest:
        """Start the request and run every step inline."""
        record = await self.start(request_id, schedule=False)
        for step in sorted(self.steps):
            record = await self.run_step(request_id, step, schedule_next=False)
            if record.status in TERMINAL_STATUSES and step < FINAL_STEP:
                break
        return record

    async def fail(self, request_id: str, message: str) -> Optional[ScanRequest]:
        """Mark the request failed. Returns None if it no longer exists."""
        try:
            return await self.store.update(
                request_id,
                status=ScanStatus.failed,
                error_message=message,
                completed_at=_now(),
            )
        except ScanRecordLocked:
            return await self.store.get(request_id)
        except ScanNotFound:
            logger.error(f"Cannot mark missing scan {request_id} as failed")
            return None

    async def _execute(self, record: ScanRequest, step: int) -> ScanRequest:
        budget = self.settings.step_budget
        started = time.monotonic()
        logger.info(f"Scan {record.id}: step {step} started")

        try:
            async with self.client_factory() as client:
                error = await asyncio.wait_for(self.steps[step](record, client), timeout=budget)
        except asyncio.TimeoutError:
            error = f"Step {step} did not finish within {budget:g}s"
            logger.error(f"Scan {record.id}: {error}")
        except Exception as e:
            logger.exception(f"Scan {record.id}: step {step} raised")
            error = f"Step {step} failed: {e.__class__.__name__}"

        results = record.results
        metadata = results.scan_metadata
        if error:
            self._mark_sections(record, step, error)
            metadata.step_errors[f"step_{step}"] = error
        metadata.step = step
        metadata.steps_completed[f"step_{step}"] = _now()
        score_results(results)

        changes = {"results": results, "discovered_credential": record.discovered_credential}
        if step == FINAL_STEP:
            changes.update(self._finalize(record))

        logger.info(f"Scan {record.id}: step {step} finished in {time.monotonic() - started:.1f}s")
        return await self.store.update(record.id, **changes)

    def _mark_sections(self, record: ScanRequest, step: int, error: str) -> None:
        """Give every section of the step that never got written an error marker."""
        for name, section_type in STEP_SECTIONS[step].items():
            if getattr(record.results, name) is None:
                setattr(record.results, name, section_type(error=error))

    def _finalize(self, record: ScanRequest) -> dict:
        metadata = record.results.scan_metadata
        finished = _now()
        duration_ms = int((finished - (metadata.started_at or record.created_at)).total_seconds() * 1000)
        metadata.total_duration_ms = duration_ms
        metadata.scan_status = "completed_with_errors" if metadata.step_errors else "completed"
        logger.info(f"Scan {record.id} {metadata.scan_status} in {duration_ms}ms, score {record.results.overall_score}")
        return {
            "status": ScanStatus.completed,
            "completed_at": finished,
            "duration_ms": duration_ms,
        }

    def _credential_for(self, record: ScanRequest) -> Optional[BackendCredential]:
        return resolve_credential(record.supabase_url, record.supabase_key) or record.discovered_credential

    async def _scan_site(self, record: ScanRequest, client: httpx.AsyncClient) -> Optional[str]:
        results = record.results
        try:
            content = await fetch_site_content(record.url, client, self.settings)
        except FetchError as e:
            message = f"Could not fetch {record.url}: {e}"
            results.security_headers = SecurityHeadersSection(error=message)
            results.api_keys_and_leaks = LeakAnalysis(error=message)
            return message

        audit = headers.audit(content.page.headers)
        results.security_headers = SecurityHeadersSection(
            present=audit.present,
            missing=audit.missing,
            score=headers.headers_score(audit),
            recommendations=headers.header_recommendations(audit.missing),
        )

        documents = content.documents()
        findings = detect_many(documents)
        auth_check = await check_auth_pages(
            content.page.body,
            content.page.final_url,
            client,
            timeout=self.settings.page_timeout,
        )
        findings.extend(unprotected_page_findings(auth_check))
        results.api_keys_and_leaks = LeakAnalysis(
            leaks_found=findings,
            js_files_scanned=len(content.script_urls),
            failed_scripts=content.failed_scripts,
            auth_pages=auth_check,
        )

        record.discovered_credential = find_credential(documents)
        return None

    async def _scan_backend(self, record: ScanRequest, client: httpx.AsyncClient) -> Optional[str]:
        credential = self._credential_for(record)
        leaks = record.results.api_keys_and_leaks
        # Re-fetch only when step 1 could not read the site.
        if credential is None and (leaks is None or leaks.error):
            try:
                credential = await find_site_credential(record.url, client, self.settings)
            except FetchError as e:
                message = f"Could not fetch {record.url}: {e}"
                record.results.backend_analysis = BackendAnalysis(error=message)
                return message
            record.discovered_credential = credential

        if credential is None:
            record.results.backend_analysis = BackendAnalysis(
                supabase_detected=False,
                message="No Supabase credentials found on the website",
                scanned_at=_now(),
            )
            return None

        try:
            record.results.backend_analysis = await analyze_backend(credential, client, self.settings)
        except SchemaError as e:
            logger.warning(f"Scan {record.id}: schema of project {credential.project_id} unavailable: {e}")
            record.results.backend_analysis = BackendAnalysis(
                supabase_detected=True,
                supabase_url=credential.endpoint_url,
                project_id=credential.project_id,
                credential_source=credential.source,
                summary=summarize_tables([]),
                error=str(e),
                scanned_at=_now(),
            )
            return str(e)
        return None

    async def _scan_subdomains(self, record: ScanRequest, client: httpx.AsyncClient) -> Optional[str]:
        analysis = await discover_subdomains(
            record.url,
            client,
            use_ct_logs=self.settings.use_ct_logs,
            timeout=self.settings.probe_timeout,
        )
        record.results.subdomain_analysis = analysis
        return analysis.error

    async def _scan_authenticated(self, record: ScanRequest, client: httpx.AsyncClient) -> Optional[str]:
        backend = record.results.backend_analysis
        tables = [t.name for t in backend.tables] if backend else []
        analysis = await authenticated_analysis(
            record.url,
            record.auth_token,
            client,
            credential=self._credential_for(record),
            tables=tables,
            timeout=self.settings.page_timeout,
            batch_size=self.settings.probe_batch_size,
            batch_pause=self.settings.probe_batch_pause,
        )
        record.results.authenticated_analysis = analysis
        return analysis.error
