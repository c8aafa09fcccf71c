"""Runtime settings loaded from SITE_SCANNER_* environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "SITE_SCANNER_"

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteScanner/1.0)"


class Settings(BaseModel):
    """Scanner configuration.

    Every field can be overridden with an environment variable named
    ``SITE_SCANNER_<FIELD>`` (upper case). Use ``Settings.from_env()`` in
    entrypoints and plain ``Settings(...)`` in tests.
    """

    service_key: Optional[str] = Field(
        default=None, description="Shared secret for internal step-trigger calls"
    )
    api_url: str = Field(
        default="http://localhost:8000", description="Base URL of this service, used by the HTTP step scheduler"
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT)

    page_timeout: float = Field(default=5.0, gt=0, description="Timeout for the main page fetch")
    script_timeout: float = Field(default=3.0, gt=0, description="Timeout for each linked script")
    max_redirects: int = Field(default=3, ge=0)
    max_body_bytes: int = Field(default=2_000_000, gt=0)
    max_scripts: int = Field(default=15, ge=0)

    schema_timeout: float = Field(default=8.0, gt=0)
    probe_timeout: float = Field(default=3.0, gt=0)
    probe_batch_size: int = Field(default=5, ge=1)
    probe_batch_pause: float = Field(default=0.2, ge=0)

    quick_scan_budget: float = Field(default=30.0, gt=0, description="Wall-clock budget for a quick scan")
    step_budget: float = Field(default=90.0, gt=0, description="Wall-clock budget for each deep-scan step")
    step_delay: float = Field(default=1.0, ge=0, description="Pause before the next step is started")

    anonymous_scan_limit: int = Field(default=2, ge=0)
    authenticated_scan_limit: int = Field(default=2, ge=0)
    quota_window: int = Field(default=86_400, gt=0, description="Quota window in seconds")
    ip_salt: str = Field(default="site-scanner-salt")

    use_ct_logs: bool = Field(default=True, description="Query crt.sh during subdomain discovery")
    require_payment: bool = Field(default=False, description="Only start deep scans whose payment completed")

    gemini_api_key: Optional[str] = Field(default=None, description="Enables AI analysis of scan reports")
    gemini_model: str = Field(default="gemini-2.5-flash")

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Build settings from the environment, ignoring unset variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)
