#!/usr/bin/env python3
"""
Sandbox entrypoint for site-scanner.
Reads scan parameters from stdin JSON, scans the website, outputs JSON to stdout.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

sys.path.insert(0, str(Path(__file__).parent / "src"))

from site_scanner.config import Settings
from site_scanner.fetcher import create_client, normalize_target
from site_scanner.models import PRIVATE_REQUEST_FIELDS
from site_scanner.orchestrator import ScanOrchestrator
from site_scanner.scanner import quick_scan
from site_scanner.store import InMemoryScanStore

logging.basicConfig(level=logging.INFO, stream=sys.stderr)
logger = logging.getLogger(__name__)

VALID_MODES = {"quick", "deep"}


async def _run_quick(url: str, settings: Settings, check_rls: bool) -> dict[str, Any]:
    async with create_client(settings) as client:
        report = await asyncio.wait_for(
            quick_scan(url, client, settings, check_rls=check_rls),
            timeout=settings.quick_scan_budget,
        )
    return report.model_dump(mode="json")


async def _run_deep(
    url: str,
    settings: Settings,
    auth_token: Optional[str],
    supabase_url: Optional[str],
    supabase_key: Optional[str],
) -> dict[str, Any]:
    orchestrator = ScanOrchestrator(InMemoryScanStore(), settings=settings)
    record = await orchestrator.submit(
        url,
        auth_token=auth_token,
        supabase_url=supabase_url,
        supabase_key=supabase_key,
    )
    record = await orchestrator.run_all(record.id)
    return record.model_dump(mode="json", exclude=PRIVATE_REQUEST_FIELDS)


def main() -> None:
    try:
        input_data = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        print(json.dumps({"error": f"Invalid JSON input: {e}"}))
        sys.exit(1)

    try:
        url = normalize_target(input_data.get("url"))
    except ValueError as e:
        print(
            json.dumps(
                {
                    "error": str(e),
                    "examples": {
                        "quick": {"url": "example.com"},
                        "deep": {"url": "https://example.com", "mode": "deep"},
                    },
                }
            )
        )
        sys.exit(1)

    mode = input_data.get("mode", "quick")
    if mode not in VALID_MODES:
        print(json.dumps({"error": f"Invalid mode '{mode}'", "valid_modes": sorted(VALID_MODES)}))
        sys.exit(1)

    settings = Settings.from_env()
    try:
        if mode == "quick":
            result = asyncio.run(_run_quick(url, settings, bool(input_data.get("check_rls", False))))
        else:
            result = asyncio.run(
                _run_deep(
                    url,
                    settings,
                    auth_token=input_data.get("auth_token"),
                    supabase_url=input_data.get("supabase_url"),
                    supabase_key=input_data.get("supabase_key"),
                )
            )
        print(json.dumps(result))
    except Exception as e:
        logger.error(f"Scan of {url} failed: {e}")
        print(json.dumps({"error": str(e) or e.__class__.__name__}))
        sys.exit(1)


if __name__ == "__main__":
    main()
