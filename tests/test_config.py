"""Tests for settings loading."""

import pytest
from pydantic import ValidationError

from site_scanner.config import Settings


class TestFromEnv:
    """Settings.from_env reads SITE_SCANNER_* variables."""

    def test_defaults_when_nothing_set(self):
        settings = Settings.from_env({})
        assert settings.max_redirects == 3
        assert settings.service_key is None
        assert settings.use_ct_logs is True

    def test_values_are_coerced(self):
        settings = Settings.from_env(
            {
                "SITE_SCANNER_SERVICE_KEY": "secret",
                "SITE_SCANNER_PROBE_BATCH_SIZE": "8",
                "SITE_SCANNER_STEP_BUDGET": "45.5",
                "SITE_SCANNER_USE_CT_LOGS": "false",
            }
        )
        assert settings.service_key == "secret"
        assert settings.probe_batch_size == 8
        assert settings.step_budget == 45.5
        assert settings.use_ct_logs is False

    def test_empty_and_unrelated_variables_ignored(self):
        settings = Settings.from_env({"SITE_SCANNER_API_URL": "", "MAX_REDIRECTS": "9"})
        assert settings.api_url == "http://localhost:8000"
        assert settings.max_redirects == 3

    def test_invalid_value_rejected(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"SITE_SCANNER_PROBE_BATCH_SIZE": "0"})
