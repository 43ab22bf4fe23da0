"""Content Risk Analyzer - Analysis Stages
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

One method per pipeline stage. Each stage builds its prompt, makes one model
call through the gateway and extracts a validated object. A response that
cannot be extracted is re-asked `parse_retries` times before the stage raises
JsonExtractionFailed; Unrecoverable from the gateway propagates untouched.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

import prompts
from config import AnalysisConfig
from context_prep import AnalysisContext
from errors import JsonExtractionFailed
from model_gateway import ModelGateway
from models import (
    SEVERITY_RANK,
    BasicAnalysis,
    CategoryBatch,
    CategoryResult,
    ChannelContext,
    ConfidenceAnalysis,
    ContentOrigin,
    ContextClassification,
    Priority,
    RiskAssessment,
    Suggestion,
    SuggestionBatch,
)
from output_extractor import StructuredOutputExtractor, extract_category_blocks
from policy_catalog import PolicyCatalog
from scoring import normalize_batch_scores, severity_for_score

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# AI-detection leniency per content type: structured formats look "AI-like"
CONTENT_TYPE_MULTIPLIERS = {
    'gaming': 0.6,
    'vlog': 0.4,
    'entertainment': 0.7,
    'educational': 0.8,
    'tutorial': 0.8,
    'review': 0.7,
    'news': 0.9,
    'general': 0.8,
}
DEFAULT_CONTENT_TYPE_MULTIPLIER = 0.8

ESTABLISHED_CHANNEL_YEARS = 1
ESTABLISHED_CHANNEL_SUBSCRIBERS = 10000

PADDING_SUGGESTION = Suggestion(
    title="General Best Practice",
    text="Consider reviewing your content for further improvements in engagement, compliance, or monetization.",
    priority=Priority.LOW,
    impact_score=40,
)
REVIEW_SUGGESTION = Suggestion(
    title="Review Content",
    text="Please review your content for potential policy violations.",
    priority=Priority.MEDIUM,
    impact_score=50,
)

DEFAULT_CONFIDENCE = 50
CATEGORY_SUMMARY_LIMIT = 6


def pad_suggestions(suggestions: list[Suggestion], config: AnalysisConfig) -> list[Suggestion]:
    """Cap at max_suggestions, pad with the best-practice tip up to min_suggestions"""
    capped = list(suggestions[:config.max_suggestions])
    while len(capped) < config.min_suggestions:
        capped.append(PADDING_SUGGESTION)
    return capped


def default_suggestions(config: AnalysisConfig) -> list[Suggestion]:
    return pad_suggestions([REVIEW_SUGGESTION], config)


def channel_age_years(channel: ChannelContext) -> float:
    if not channel.account_date:
        return 1.0
    try:
        created = datetime.fromisoformat(channel.account_date.replace("Z", "+00:00"))
    except ValueError:
        return 1.0
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return max(0.0, (datetime.now(timezone.utc) - created).days / 365)


def summarize_categories(categories: dict[str, CategoryResult], limit: int = CATEGORY_SUMMARY_LIMIT) -> str:
    ranked = sorted(categories.items(), key=lambda item: item[1].risk_score, reverse=True)[:limit]
    if not ranked:
        return "(no category results)"
    return "\n".join(
        f"- {key}: score {result.risk_score}, {result.severity.value}"
        + (f", violations: {', '.join(result.violations[:3])}" if result.violations else "")
        for key, result in ranked
    )


class AnalysisStages:
    def __init__(
        self,
        gateway: ModelGateway,
        extractor: Optional[StructuredOutputExtractor] = None,
        config: Optional[AnalysisConfig] = None,
        catalog: Optional[PolicyCatalog] = None,
    ):
        self.gateway = gateway
        self.extractor = extractor or StructuredOutputExtractor()
        self.config = config or AnalysisConfig()
        self.catalog = catalog or PolicyCatalog(self.config.policy_db_path, self.config.category_weights)

    async def _run(
        self,
        stage: str,
        prompt: str,
        schema: type[T],
        context: Optional[dict] = None,
        field_extractor: Optional[Callable[[str], dict]] = None,
    ) -> T:
        current_prompt = prompt
        failure: Optional[JsonExtractionFailed] = None

        for attempt in range(self.config.parse_retries + 1):
            response = await self.gateway.generate(current_prompt)
            try:
                result = self.extractor.extract(response, schema, context=context, field_extractor=field_extractor)
            except JsonExtractionFailed as e:
                failure = e
                logger.warning(f"Stage {stage}: unparseable response (attempt {attempt + 1})")
                current_prompt = prompt + prompts.REASK_SUFFIX
                continue
            logger.info(f"Stage {stage} complete (strategy={result.strategy})")
            return result.data

        raise failure

    async def classify_context(self, context: AnalysisContext, video_context: Optional[str] = None) -> ContextClassification:
        prompt = prompts.CONTEXT_PROMPT.format(text=context.decoded_text[:prompts.CONTEXT_EXCERPT_CHARS])
        result = await self._run(
            "context_classification",
            prompts.with_video_context(prompt, video_context),
            ContextClassification,
        )
        return result.model_copy(update={"content_length": context.content_length})

    async def detect_content_origin(
        self,
        context: AnalysisContext,
        channel: ChannelContext,
        classification: ContextClassification,
    ) -> ContentOrigin:
        content_type = classification.content_type.strip().lower()
        multiplier = CONTENT_TYPE_MULTIPLIERS.get(content_type, DEFAULT_CONTENT_TYPE_MULTIPLIER)
        age = channel_age_years(channel)
        text = context.decoded_text

        prompt = prompts.CONTENT_ORIGIN_PROMPT.format(
            channel_age=age,
            established="Yes" if age > ESTABLISHED_CHANNEL_YEARS or channel.subscriber_count > ESTABLISHED_CHANNEL_SUBSCRIBERS else "No",
            subscriber_count=channel.subscriber_count,
            video_count=channel.video_count,
            channel_ai_probability=channel.ai_probability,
            content_type=content_type,
            content_length=len(text),
            excerpt=text[:prompts.ORIGIN_EXCERPT_CHARS] + ("..." if len(text) > prompts.ORIGIN_EXCERPT_CHARS else ""),
        )
        result = await self._run("content_origin", prompt, ContentOrigin)
        adjusted = int(round(result.ai_probability * multiplier))
        logger.info(f"AI probability {result.ai_probability} x {multiplier} ({content_type}) -> {adjusted}")
        return result.model_copy(update={
            "raw_probability": result.ai_probability,
            "ai_probability": adjusted,
            "content_type": content_type,
        })

    async def analyze_categories(
        self,
        context: AnalysisContext,
        classification: ContextClassification,
        video_context: Optional[str] = None,
    ) -> dict[str, CategoryResult]:
        categories = self.catalog.categories()
        prompt = prompts.CATEGORY_PROMPT.format(
            content_type=classification.content_type,
            target_audience=classification.target_audience,
            category_list="\n".join(f"- {key}: {name}" for key, name in categories.items()),
            text=context.decoded_text,
        )
        batch = await self._run(
            "category_analysis",
            prompts.with_video_context(prompt, video_context),
            CategoryBatch,
            field_extractor=extract_category_blocks,
        )
        return self._complete_categories(batch.categories)

    def _complete_categories(self, raw: dict[str, CategoryResult]) -> dict[str, CategoryResult]:
        """Known keys only, every key present, scores on the 0-100 scale"""
        keys = self.catalog.category_keys()
        results = {
            key: raw.get(key) or CategoryResult(explanation="Category not found in response")
            for key in keys
        }
        unknown = set(raw) - set(keys)
        if unknown:
            logger.debug(f"Ignoring unknown categories from model: {sorted(unknown)}")

        risk = normalize_batch_scores([r.risk_score for r in results.values()])
        confidence = normalize_batch_scores([r.confidence for r in results.values()])

        completed = {}
        for (key, result), score, conf in zip(results.items(), risk, confidence):
            derived = severity_for_score(score, self.config)
            severity = max(result.severity, derived, key=lambda level: SEVERITY_RANK[level])
            completed[key] = result.model_copy(update={
                "risk_score": score,
                "confidence": conf,
                "severity": severity,
            })
        return completed

    async def assess_risk(
        self,
        text: str,
        classification: ContextClassification,
        categories: dict[str, CategoryResult],
        video_context: Optional[str] = None,
    ) -> RiskAssessment:
        """Risk assessment of one chunk; span indices are local to `text`"""
        prompt = prompts.RISK_ASSESSMENT_PROMPT.format(
            content_type=classification.content_type,
            target_audience=classification.target_audience,
            category_summary=summarize_categories(categories),
            text=text,
        )
        return await self._run(
            "risk_assessment",
            prompts.with_video_context(prompt, video_context),
            RiskAssessment,
            context={"source_text": text},
        )

    async def analyze_confidence(
        self,
        context: AnalysisContext,
        categories: dict[str, CategoryResult],
        risk: RiskAssessment,
    ) -> ConfidenceAnalysis:
        prompt = prompts.CONFIDENCE_PROMPT.format(
            excerpt=context.decoded_text[:prompts.CONFIDENCE_EXCERPT_CHARS],
            category_summary=summarize_categories(categories),
            risk_score=risk.overall_risk_score,
            severity=risk.severity_level.value,
            flagged_section=risk.flagged_section,
        )
        return await self._run("confidence_analysis", prompt, ConfidenceAnalysis)

    async def generate_suggestions(
        self,
        classification: ContextClassification,
        categories: dict[str, CategoryResult],
        risk: RiskAssessment,
        video_context: Optional[str] = None,
    ) -> list[Suggestion]:
        prompt = prompts.SUGGESTIONS_PROMPT.format(
            content_type=classification.content_type,
            target_audience=classification.target_audience,
            risk_score=risk.overall_risk_score,
            severity=risk.severity_level.value,
            flagged_section=risk.flagged_section or "none",
            category_summary=summarize_categories(categories),
            min_suggestions=self.config.min_suggestions,
            max_suggestions=self.config.max_suggestions,
        )
        batch = await self._run(
            "suggestion_generation",
            prompts.with_video_context(prompt, video_context),
            SuggestionBatch,
        )
        return pad_suggestions(batch.suggestions, self.config)

    async def basic_analysis(self, text: str) -> BasicAnalysis:
        prompt = prompts.BASIC_ANALYSIS_PROMPT.format(text=text)
        return await self._run("basic_analysis", prompt, BasicAnalysis)
