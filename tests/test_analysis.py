"""Tests for AI analysis of scan reports."""

import json

import pytest

from site_scanner.analysis import (
    ANALYSIS_PROMPT,
    AnalysisProvider,
    GeminiProvider,
    analyze_report,
    parse_analysis,
    provider_from_settings,
    report_sections,
)
from site_scanner.config import Settings
from site_scanner.errors import AnalysisUnavailable

ANALYSIS = {
    "severity": "high",
    "summary": "Two tables are readable without authentication.",
    "key_findings": ["profiles is public", "CSP missing"],
    "recommendations": [
        {"priority": "high", "issue": "Public profiles table", "solution": "Enable RLS on profiles"},
    ],
}

RESULTS = {
    "security_headers": {"present": [], "missing": ["content-security-policy"]},
    "backend_analysis": {"supabase_detected": True, "summary": {"public_tables": 2}},
    "subdomain_analysis": None,
    "scan_metadata": {"steps_completed": ["step_1"]},
    "overall_score": 40,
}


class FakeProvider(AnalysisProvider):
    """Returns a canned answer and remembers what it was sent."""

    def __init__(self, response: str):
        self.response = response
        self.calls = []

    async def analyze_text(self, text: str, prompt: str) -> str:
        self.calls.append((text, prompt))
        return self.response


class TestParseAnalysis:
    """Test parsing of model answers."""

    def test_plain_json(self):
        analysis = parse_analysis(json.dumps(ANALYSIS))
        assert analysis.severity == "high"
        assert analysis.recommendations[0].solution == "Enable RLS on profiles"

    def test_code_fence_removed(self):
        analysis = parse_analysis(f"```json\n{json.dumps(ANALYSIS)}\n```")
        assert analysis.summary == ANALYSIS["summary"]

    def test_invalid_answer_falls_back(self):
        analysis = parse_analysis("I think the site is fine.")
        assert analysis.severity == "medium"
        assert analysis.key_findings == ["AI analysis temporarily unavailable"]

    def test_unknown_severity_falls_back(self):
        analysis = parse_analysis(json.dumps({**ANALYSIS, "severity": "catastrophic"}))
        assert analysis.recommendations[0].issue == "Manual review required"

    def test_recommendations_capped(self):
        many = {**ANALYSIS, "recommendations": ANALYSIS["recommendations"] * 8}
        assert len(parse_analysis(json.dumps(many)).recommendations) == 5


class TestAnalyzeReport:
    """Test the analysis flow with a fake provider."""

    def test_report_sections(self):
        sections = report_sections(RESULTS)
        assert set(sections) == {"security_headers", "backend_analysis", "overall_score"}

    async def test_sections_sent_with_prompt(self):
        provider = FakeProvider(json.dumps(ANALYSIS))
        analysis = await analyze_report(RESULTS, provider)

        text, prompt = provider.calls[0]
        assert analysis.severity == "high"
        assert prompt == ANALYSIS_PROMPT
        assert json.loads(text)["overall_score"] == 40
        assert "scan_metadata" not in json.loads(text)

    async def test_no_provider(self):
        with pytest.raises(AnalysisUnavailable):
            await analyze_report(RESULTS, None)

    async def test_empty_report(self):
        with pytest.raises(ValueError):
            await analyze_report({"scan_metadata": {}}, FakeProvider("{}"))


class TestProviderFromSettings:
    """Test provider selection."""

    def test_no_key_means_no_provider(self):
        assert provider_from_settings(Settings()) is None

    def test_gemini_with_key(self):
        provider = provider_from_settings(Settings(gemini_api_key="test-key", gemini_model="gemini-2.0-flash"))
        assert isinstance(provider, GeminiProvider)
        assert provider.model_name == "gemini-2.0-flash"
