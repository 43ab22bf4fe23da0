"""Content Risk Analyzer - Fallback Chain
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Three tiers, tried in order, so a caller always receives a result:
  1. enhanced   the full multi-stage pipeline
  2. basic      one consolidated prompt, normalized into the same shape
  3. emergency  no model call at all; a fixed neutral report

InvalidInputError is a caller mistake and is re-raised from any tier.
Cancellation is never converted into a degraded result.
"""

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from config import AnalysisConfig
from context_prep import AnalysisContext
from errors import InvalidInputError
from models import (
    AnalysisMetadata,
    AnalysisMode,
    AnalysisResult,
    ContextClassification,
    Highlight,
    Priority,
    Suggestion,
    clamp_score,
)
from scoring import get_risk_level
from stages import AnalysisStages

logger = logging.getLogger(__name__)

EMERGENCY_MODEL_NAME = "emergency-fallback"
EMERGENCY_CONFIDENCE = 25
EMERGENCY_FLAGGED_SECTION = "Content analysis unavailable due to service limits"
EMERGENCY_SUGGESTION = Suggestion(
    title="Service Temporarily Unavailable",
    text="AI analysis service is currently at capacity. Please try again later or contact support.",
    priority=Priority.HIGH,
    impact_score=0,
)
EMERGENCY_HIGHLIGHT = Highlight(
    category="Service Status",
    risk="Analysis Unavailable",
    score=0,
    confidence=EMERGENCY_CONFIDENCE,
)

Tier = Callable[..., Awaitable[AnalysisResult]]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_context_summary(context: Optional[AnalysisContext]) -> ContextClassification:
    return ContextClassification(
        content_type="General",
        target_audience="General Audience",
        monetization_impact=50,
        content_length=context.content_length if context else 0,
        language_detected=context.detected_language if context else "English",
    )


def with_note(result: AnalysisResult, note: str) -> AnalysisResult:
    metadata = result.analysis_metadata
    return result.model_copy(update={
        "analysis_metadata": metadata.model_copy(update={"notes": [*metadata.notes, note]}),
    })


async def run_basic_tier(
    stages: AnalysisStages,
    context: AnalysisContext,
    config: Optional[AnalysisConfig] = None,
) -> AnalysisResult:
    """Single-prompt analysis. The risk level is recomputed from the score."""
    config = config or AnalysisConfig()
    basic = await stages.basic_analysis(context.decoded_text)

    score = basic.risk_score
    level = get_risk_level(score, config)
    if level != basic.risk_level:
        logger.info(f"Basic tier level {basic.risk_level.value} recomputed as {level.value} for score {score}")

    highlights = [
        Highlight(
            category=h.category,
            risk=h.risk or level.value.lower(),
            score=h.score,
            confidence=config.basic_default_confidence,
        )
        for h in basic.highlights[:config.highlight_limit]
    ]

    return AnalysisResult(
        risk_score=score,
        risk_level=level,
        confidence_score=config.basic_default_confidence,
        flagged_section=basic.flagged_section,
        category_breakdown={},
        context_analysis=default_context_summary(context),
        highlights=highlights,
        suggestions=[Suggestion(**s.model_dump()) for s in basic.suggestions[:config.max_suggestions]],
        analysis_metadata=AnalysisMetadata(
            model_used=stages.gateway.describe(),
            analysis_timestamp=now_iso(),
            content_length=context.content_length,
            analysis_mode=AnalysisMode.BASIC,
        ),
    )


def build_emergency_result(
    context: Optional[AnalysisContext] = None,
    config: Optional[AnalysisConfig] = None,
    reason: Optional[str] = None,
) -> AnalysisResult:
    """Deterministic, model-free report. Cannot fail."""
    config = config or AnalysisConfig()
    score = clamp_score(config.emergency_risk_score, default=50)
    return AnalysisResult(
        risk_score=score,
        risk_level=get_risk_level(score, config),
        confidence_score=EMERGENCY_CONFIDENCE,
        flagged_section=EMERGENCY_FLAGGED_SECTION,
        category_breakdown={},
        context_analysis=default_context_summary(context),
        highlights=[EMERGENCY_HIGHLIGHT],
        suggestions=[EMERGENCY_SUGGESTION],
        analysis_metadata=AnalysisMetadata(
            model_used=EMERGENCY_MODEL_NAME,
            analysis_timestamp=now_iso(),
            content_length=context.content_length if context else 0,
            analysis_mode=AnalysisMode.EMERGENCY,
            notes=[reason] if reason else [],
        ),
    )


class FallbackChain:
    """
    enhanced -> basic -> emergency.

    Tiers are injected so tests can force entry into each one. All tiers
    receive the same positional arguments; `emergency` may be sync or async
    and additionally gets a `reason` keyword.
    """

    def __init__(self, enhanced: Tier, basic: Tier, emergency: Callable[..., Any]):
        self.enhanced = enhanced
        self.basic = basic
        self.emergency = emergency

    async def run(self, *args) -> AnalysisResult:
        try:
            return await self.enhanced(*args)
        except InvalidInputError:
            raise
        except Exception as e:
            logger.error(f"Enhanced analysis failed, falling back to basic analysis: {e}", exc_info=True)
            enhanced_error = e

        try:
            result = await self.basic(*args)
            logger.info("Basic analysis completed after enhanced failure")
            return with_note(result, f"enhanced analysis failed: {enhanced_error}")
        except InvalidInputError:
            raise
        except Exception as e:
            logger.error(f"Basic analysis also failed, using emergency fallback: {e}", exc_info=True)
            basic_error = e

        reason = f"enhanced analysis failed: {enhanced_error}; basic analysis failed: {basic_error}"
        result = self.emergency(*args, reason=reason)
        if inspect.isawaitable(result):
            result = await result
        logger.warning("Returning emergency analysis result")
        return result
