"""AI-written assessment of a scan report."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from google import genai
from google.genai import types
from pydantic import ValidationError

from .config import Settings
from .errors import AnalysisUnavailable
from .models import AnalysisRecommendation, SecurityAnalysis

logger = logging.getLogger(__name__)

REPORT_SECTIONS = (
    "security_headers",
    "api_keys_and_leaks",
    "backend_analysis",
    "subdomain_analysis",
    "authenticated_analysis",
    "overall_score",
)
MAX_RECOMMENDATIONS = 5

ANALYSIS_PROMPT = """You are a cybersecurity expert analyzing website security scan results.
Based on the scan data, provide a concise security assessment and actionable recommendations.

Respond with ONLY a JSON object in this format:
{
  "severity": "low" | "medium" | "high" | "critical",
  "summary": "Brief overall security status (1-2 sentences)",
  "key_findings": ["Finding 1", "Finding 2"],
  "recommendations": [
    {"priority": "high" | "medium" | "low", "issue": "Description of the issue", "solution": "How to fix it (2-3 steps max)"}
  ]
}

Guidelines:
- If no major security issues are found, set severity to "low" and say "No major security vulnerabilities detected"
- Focus on the most critical issues first
- At most 5 recommendations, each with specific steps
- Consider leaked keys, publicly readable database tables, missing security headers and exposed subdomains
"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def fallback_analysis() -> SecurityAnalysis:
    """Returned when the model answers with something that is not a valid assessment."""
    return SecurityAnalysis(
        severity="medium",
        summary="Security analysis completed. Please review the scan results manually.",
        key_findings=["AI analysis temporarily unavailable"],
        recommendations=[
            AnalysisRecommendation(
                priority="medium",
                issue="Manual review required",
                solution="Please review the detailed scan results for security issues",
            )
        ],
    )


class AnalysisProvider(ABC):
    """Abstract base class for analysis models."""

    @abstractmethod
    async def analyze_text(self, text: str, prompt: str) -> str:
        """Send text to the model with a prompt, return the response."""


class GeminiProvider(AnalysisProvider):
    """Google Gemini analysis provider."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self.client = genai.Client(api_key=api_key)
        self.model_name = model
        self.generation_config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=0.3,
            max_output_tokens=1500,
        )

    async def analyze_text(self, text: str, prompt: str) -> str:
        full_prompt = f"{prompt}\n\nScan results:\n{text}"
        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=full_prompt,
            config=self.generation_config,
        )
        return response.text or ""


def provider_from_settings(settings: Settings) -> Optional[AnalysisProvider]:
    if not settings.gemini_api_key:
        return None
    return GeminiProvider(settings.gemini_api_key, model=settings.gemini_model)


def report_sections(results: dict[str, Any]) -> dict[str, Any]:
    """Keep only the report sections worth sending to the model."""
    return {name: results[name] for name in REPORT_SECTIONS if results.get(name) is not None}


def parse_analysis(text: str) -> SecurityAnalysis:
    """Parse the model's JSON answer, tolerating markdown code fences."""
    cleaned = _CODE_FENCE.sub("", (text or "").strip())
    try:
        analysis = SecurityAnalysis.model_validate_json(cleaned)
    except ValidationError as e:
        logger.warning(f"Could not parse AI analysis response ({e.error_count()} errors)")
        return fallback_analysis()
    analysis.recommendations = analysis.recommendations[:MAX_RECOMMENDATIONS]
    return analysis


async def analyze_report(results: dict[str, Any], provider: Optional[AnalysisProvider]) -> SecurityAnalysis:
    """Ask the provider for an assessment of a scan report.

    Raises AnalysisUnavailable when no provider is configured and ValueError
    when the report has no sections to analyze.
    """
    if provider is None:
        raise AnalysisUnavailable("AI analysis is not available")
    sections = report_sections(results)
    if not sections:
        raise ValueError("The scan results contain no report sections")

    logger.info(f"Requesting AI analysis of {len(sections)} report sections")
    response = await provider.analyze_text(json.dumps(sections, indent=2, default=str), ANALYSIS_PROMPT)
    return parse_analysis(response)
