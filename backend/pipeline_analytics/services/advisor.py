"""
Advisor Bridge

Sends aggregate statistics and detected bottlenecks to the external advisor
service and turns its answer into pending optimization candidates.

The advisor is untrusted: every suggestion is validated here and malformed ones
are logged and dropped. The advisor's reasoning is opaque to this service.
"""

import asyncio
import logging
import time
from typing import Any, Protocol, Sequence

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import to_jsonable_python

from pipeline_analytics.analytics.types import (
    AggregateStats,
    Bottleneck,
    CurrentMetrics,
    LifecycleStatus,
    OptimizationCandidate,
    OptimizationType,
    ProjectedMetrics,
)
from pipeline_analytics.config import settings
from pipeline_analytics.errors import AdvisorTimeout, AdvisorUnavailable
from pipeline_analytics.middleware.metrics import (
    advisor_candidates_rejected_total,
    advisor_requests_total,
)

logger = logging.getLogger(__name__)


class AdvisorBridge(Protocol):
    async def propose(
        self,
        pipeline_config_id: str,
        stats: AggregateStats,
        bottlenecks: Sequence[Bottleneck],
    ) -> list[OptimizationCandidate]: ...


# ── Trust boundary ───────────────────────────────────────────────────────────

class SuggestedCurrentMetrics(BaseModel):
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = Field(default=None, ge=0, le=100)


class SuggestedProjectedMetrics(BaseModel):
    # Projections may be worse than the current figures; no ordering check.
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = Field(default=None, ge=0, le=100)
    time_saved_minutes: float | None = None


class AdvisorSuggestion(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    optimization_type: OptimizationType = Field(
        validation_alias=AliasChoices("type", "optimization_type"),
    )
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    confidence_score: float = Field(
        ge=0, le=100, validation_alias=AliasChoices("confidence", "confidence_score"),
    )
    current_metrics: SuggestedCurrentMetrics = Field(default_factory=SuggestedCurrentMetrics)
    projected_metrics: SuggestedProjectedMetrics = Field(default_factory=SuggestedProjectedMetrics)
    implementation_steps: list[str] = Field(default_factory=list)
    code_changes: dict[str, Any] = Field(default_factory=dict)

    def to_candidate(self, pipeline_config_id: str) -> OptimizationCandidate:
        # Empty id: the lifecycle manager assigns a fresh one on propose.
        return OptimizationCandidate(
            optimization_id="",
            pipeline_config_id=pipeline_config_id,
            optimization_type=self.optimization_type.value,
            title=self.title,
            description=self.description,
            confidence_score=self.confidence_score,
            current_metrics=CurrentMetrics(**self.current_metrics.model_dump()),
            projected_metrics=ProjectedMetrics(**self.projected_metrics.model_dump()),
            implementation_steps=tuple(self.implementation_steps),
            code_changes=dict(self.code_changes),
            status=LifecycleStatus.PENDING.value,
        )


def _rejection_reason(exc: ValidationError) -> str:
    first = exc.errors()[0]
    return ".".join(str(p) for p in first.get("loc", ())) or "payload"


def validate_suggestions(raw: Any, pipeline_config_id: str) -> list[OptimizationCandidate]:
    """Parse raw advisor output, keeping only well-formed suggestions."""
    if isinstance(raw, dict):
        raw = raw.get("suggestions", raw.get("optimizations", []))
    if not isinstance(raw, list):
        logger.warning("Advisor returned %s instead of a list for %s", type(raw).__name__, pipeline_config_id)
        advisor_candidates_rejected_total.labels(reason="payload").inc()
        return []

    accepted = []
    for index, item in enumerate(raw):
        try:
            suggestion = AdvisorSuggestion.model_validate(item)
        except ValidationError as exc:
            reason = _rejection_reason(exc)
            advisor_candidates_rejected_total.labels(reason=reason).inc()
            logger.warning(
                "Dropping advisor suggestion #%d for %s: invalid %s (%s)",
                index, pipeline_config_id, reason, exc.errors()[0].get("msg"),
            )
            continue
        accepted.append(suggestion.to_candidate(pipeline_config_id))
    return accepted


# ── HTTP client ──────────────────────────────────────────────────────────────

def build_payload(
    pipeline_config_id: str, stats: AggregateStats, bottlenecks: Sequence[Bottleneck],
) -> dict:
    return {
        "pipeline_config_id": pipeline_config_id,
        "stats": to_jsonable_python(stats),
        "bottlenecks": to_jsonable_python(list(bottlenecks)),
    }


class HttpAdvisor:
    """AdvisorBridge over a JSON HTTP endpoint."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.advisor_url
        self.timeout = timeout if timeout is not None else settings.advisor_timeout_seconds
        self._transport = transport

    async def propose(
        self,
        pipeline_config_id: str,
        stats: AggregateStats,
        bottlenecks: Sequence[Bottleneck],
    ) -> list[OptimizationCandidate]:
        payload = build_payload(pipeline_config_id, stats, bottlenecks)
        start = time.time()
        try:
            async with asyncio.timeout(self.timeout):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.url, json=payload)
                    resp.raise_for_status()
                    body = resp.json()
        except (httpx.TimeoutException, TimeoutError) as exc:
            advisor_requests_total.labels(outcome="timeout").inc()
            raise AdvisorTimeout(pipeline_config_id, self.timeout) from exc
        except httpx.HTTPStatusError as exc:
            advisor_requests_total.labels(outcome="unavailable").inc()
            raise AdvisorUnavailable(pipeline_config_id, f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            advisor_requests_total.labels(outcome="unavailable").inc()
            raise AdvisorUnavailable(pipeline_config_id, str(exc) or type(exc).__name__) from exc

        advisor_requests_total.labels(outcome="ok").inc()
        candidates = validate_suggestions(body, pipeline_config_id)
        logger.info(
            "Advisor returned %d valid suggestions for %s in %.2fs",
            len(candidates), pipeline_config_id, time.time() - start,
        )
        return candidates
