"""
AI Pattern Detector

Sends a bounded digest of the detection context to a language model and
turns its JSON answer into the same DetectionResult shape the rules emit.

Failure is never fatal here: a timeout, network/auth error or an unusable
response is logged and contributes zero issues to the pass.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from .exceptions import AIBackendError, AIParseError
from .models import (
    AffectedModule,
    AlertSeverity,
    DetectionMethod,
    EstimatedImpact,
    IssueType,
    RecommendationType,
)
from .types import (
    AIAnalysisMetadata,
    AlertDraft,
    DetectionContext,
    DetectionResult,
    RecommendationDraft,
    clamp_confidence,
)

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are an intelligent workforce management analyst. Analyze the provided data and "
    "identify potential issues, inefficiencies, or risks that may not be obvious from simple "
    "rules. Focus on patterns, trends, and nuanced problems. Respond only with a JSON object "
    "in the requested format."
)

RESPONSE_CONTRACT = (
    '{"issues": [{"title": "Issue title", "description": "Detailed description", '
    '"issueType": "understaffing|scheduling_conflict|payment_delay|compliance_breach|'
    'resource_shortage|skill_gap|performance_issue|budget_overrun|safety_concern|other", '
    '"severity": "critical|high|medium|low", "confidence": 0-100, '
    '"recommendations": [{"title": "Recommendation title", "description": "Action to take", '
    '"automatable": true|false}]}]}'
)

DEFAULT_AI_CONFIDENCE = 70.0
AI_RECOMMENDATION_CONFIDENCE = 75.0

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class CompletionClient(Protocol):
    """Language-model completion backend."""

    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


class OpenAICompletionClient:
    """CompletionClient backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 1000,
        temperature: float = 0.3,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


# =============================================================================
# Prompt building
# =============================================================================

def build_digest(context: DetectionContext, sample_size: int = 5) -> str:
    """
    Build the user prompt: per collection, the total count and a sample of
    at most `sample_size` records, followed by the response contract.
    """
    parts = ["Analyze the following workforce data and identify potential issues:"]

    if context.jobs:
        parts.append(f"\nJobs ({len(context.jobs)} total):")
        parts.append(json.dumps([
            {"id": j.id, "title": j.title, "status": j.status, "jobType": j.job_type}
            for j in context.jobs[:sample_size]
        ]))

    if context.shifts:
        parts.append(f"\nShifts ({len(context.shifts)} total):")
        parts.append(json.dumps([
            {
                "id": s.id,
                "title": s.title,
                "status": s.status,
                "startTime": s.start_time.isoformat(),
                "endTime": s.end_time.isoformat(),
                "assigned": bool(s.worker_id),
            }
            for s in context.shifts[:sample_size]
        ]))

    if context.payments:
        parts.append(f"\nPayments ({len(context.payments)} total):")
        parts.append(json.dumps([
            {
                "id": p.id,
                "amount": float(p.amount),
                "status": p.status,
                "createdAt": p.created_at.isoformat() if p.created_at else None,
            }
            for p in context.payments[:sample_size]
        ]))

    if context.compliance_records:
        parts.append(f"\nCompliance records ({len(context.compliance_records)} total):")
        parts.append(json.dumps([
            {"id": c.id, "title": c.title, "complianceStatus": c.compliance_status}
            for c in context.compliance_records[:sample_size]
        ]))

    parts.append("\nProvide your analysis in JSON format with the following structure:")
    parts.append(RESPONSE_CONTRACT)

    return "\n".join(parts)


# =============================================================================
# Response parsing
# =============================================================================

def _map_issue_type(value: Any) -> IssueType:
    try:
        return IssueType(value)
    except (TypeError, ValueError):
        return IssueType.OTHER


def _map_severity(value: Any) -> AlertSeverity:
    try:
        return AlertSeverity(str(value).lower())
    except (TypeError, ValueError):
        return AlertSeverity.MEDIUM


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def parse_ai_response(response: str) -> List[DetectionResult]:
    """
    Parse a model response into detection results.

    The response may wrap the JSON object in prose; the outermost {...}
    span is used. Raises AIParseError when no usable object is found.
    Individual malformed issues are skipped.
    """
    match = _JSON_OBJECT.search(response or "")
    if not match:
        raise AIParseError("No JSON object found in model response")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AIParseError(f"Model response is not valid JSON: {e}") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("issues"), list):
        raise AIParseError('Model response has no "issues" list')

    results = []
    for issue in parsed["issues"]:
        if not isinstance(issue, dict):
            continue

        alert = AlertDraft(
            title=_text(issue.get("title"), "AI-Detected Issue"),
            description=_text(issue.get("description"), ""),
            issue_type=_map_issue_type(issue.get("issueType")),
            severity=_map_severity(issue.get("severity")),
            confidence=clamp_confidence(issue.get("confidence"), DEFAULT_AI_CONFIDENCE),
            affected_module=AffectedModule.GENERAL,
            detection_method=DetectionMethod.AI_POWERED,
            metadata=AIAnalysisMetadata(ai_analysis=issue),
        )

        recommendations = []
        raw_recommendations = issue.get("recommendations")
        if isinstance(raw_recommendations, list):
            for rec in raw_recommendations:
                if not isinstance(rec, dict):
                    continue
                recommendations.append(RecommendationDraft(
                    title=_text(rec.get("title"), "AI Recommendation"),
                    description=_text(rec.get("description"), ""),
                    recommendation_type=RecommendationType.WORKFLOW_ADJUSTMENT,
                    priority=len(recommendations) + 1,
                    confidence=AI_RECOMMENDATION_CONFIDENCE,
                    estimated_impact=EstimatedImpact.MEDIUM,
                    automatable=rec.get("automatable") is True,
                    action_metadata=rec,
                ))

        results.append(DetectionResult(alert, tuple(recommendations)))

    return results


# =============================================================================
# Detector
# =============================================================================

class AIPatternDetector:
    """
    Language-model based anomaly detector.

    Usage:
        detector = AIPatternDetector(OpenAICompletionClient(api_key=api_key))
        results = await detector.detect(context)  # never raises
    """

    def __init__(
        self,
        client: CompletionClient,
        timeout_seconds: float = 10.0,
        sample_size: int = 5,
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.sample_size = sample_size

    async def detect(self, context: DetectionContext) -> List[DetectionResult]:
        """Run one model call over the context. Returns [] on any failure."""
        if context.record_count == 0:
            return []

        prompt = build_digest(context, self.sample_size)

        try:
            response = await self._complete(prompt)
            results = parse_ai_response(response)
        except AIBackendError as e:
            logger.error(f"AI issue detection failed: {e}")
            return []
        except AIParseError as e:
            logger.warning(f"AI issue detection returned an unusable response: {e}")
            return []
        except Exception as e:
            logger.error(f"AI issue detection error: {e}", exc_info=True)
            return []

        logger.info(f"AI issue detection found {len(results)} issues")
        return results

    async def _complete(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(
                self.client.complete(SYSTEM_PROMPT, prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise AIBackendError(f"Model call timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise AIBackendError(f"Model call failed: {e}") from e
