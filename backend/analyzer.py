"""
Content Risk Analyzer - Stage Orchestrator
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Runs one request through the analysis stages:

    ContextClassification
      -> [ContentOriginDetection || CategoryAnalysis]
      -> RiskAssessment (fanned out per chunk for long text)
      -> ConfidenceAnalysis
      -> SuggestionGeneration

A stage whose response cannot be extracted falls back to documented defaults
and is listed in analysis_metadata.degraded_stages. Unrecoverable aborts the
enhanced pipeline and hands the request to the fallback chain.
"""

import asyncio
import logging
import time
from typing import Awaitable, Optional, TypeVar

import prompts
from chunking import Chunk, merge_chunk_assessments, split_into_chunks
from config import AnalysisConfig
from context_prep import AnalysisContext, prepare_context
from errors import InvalidInputError, JsonExtractionFailed, Unrecoverable
from fallback import (
    EMERGENCY_MODEL_NAME,
    FallbackChain,
    build_emergency_result,
    default_context_summary,
    now_iso,
    run_basic_tier,
)
from model_gateway import ModelGateway, trace_calls
from models import (
    AnalysisMetadata,
    AnalysisMode,
    AnalysisRequest,
    AnalysisResult,
    CategoryResult,
    ConfidenceAnalysis,
    ContentOrigin,
    RiskAssessment,
    VideoAnalysisRequest,
)
from output_extractor import StructuredOutputExtractor
from policy_catalog import AI_GENERATED_CATEGORY, PolicyCatalog
from scoring import (
    calculate_overall_risk_score,
    generate_highlights,
    get_risk_level,
    severity_for_score,
)
from stages import DEFAULT_CONFIDENCE, AnalysisStages, default_suggestions

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_RISK_FLAGGED_SECTION = "No significant policy risks detected"


async def gather_cancelling(*aws: Awaitable) -> list:
    """
    Like asyncio.gather, but the first failure cancels the siblings.

    Results come back in argument order. If the caller is cancelled, every
    child task is cancelled and awaited before CancelledError propagates, so
    no partial result outlives the request.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]


class ContentRiskAnalyzer:
    """
    Entry point for content analysis.

    analyze() always returns an AnalysisResult for valid input; degradation
    shows up in analysis_metadata.analysis_mode. Only InvalidInputError (and
    EmptyInputError) is raised to the caller.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        config: Optional[AnalysisConfig] = None,
        catalog: Optional[PolicyCatalog] = None,
        extractor: Optional[StructuredOutputExtractor] = None,
    ):
        self.gateway = gateway
        self.config = config or AnalysisConfig()
        self.catalog = catalog or PolicyCatalog(self.config.policy_db_path, self.config.category_weights)
        self.stages = AnalysisStages(gateway, extractor, self.config, self.catalog)
        self.fallback = FallbackChain(
            enhanced=self._run_enhanced,
            basic=lambda context, request: run_basic_tier(self.stages, context, self.config),
            emergency=lambda context, request, reason=None: build_emergency_result(context, self.config, reason),
        )

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        started = time.monotonic()
        context = prepare_context(request.text, self.config)
        logger.info(
            f"Analyzing {context.content_length} characters "
            f"(language={context.detected_language}, chunked={context.needs_chunking})"
        )

        with trace_calls() as trace:
            result = await self.fallback.run(context, request)

        metadata = result.analysis_metadata
        update = {
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "provider_failovers": metadata.provider_failovers + trace.failovers,
            "visual_context_lost": metadata.visual_context_lost or trace.visual_context_lost,
        }
        if metadata.model_used != EMERGENCY_MODEL_NAME and trace.providers:
            update["model_used"] = ", ".join(trace.providers)

        result = result.model_copy(update={"analysis_metadata": metadata.model_copy(update=update)})
        logger.info(
            f"Analysis complete: score={result.risk_score} level={result.risk_level.value} "
            f"mode={result.analysis_metadata.analysis_mode.value} "
            f"time={result.analysis_metadata.processing_time_ms}ms"
        )
        return result

    async def _with_default(self, stage: str, awaitable: Awaitable[T], default: T, degraded: list[str]) -> T:
        """Await a stage; on JsonExtractionFailed record it and use the default"""
        try:
            return await awaitable
        except JsonExtractionFailed as e:
            logger.warning(f"Stage {stage} degraded to defaults: {e}")
            degraded.append(stage)
            return default

    async def _run_enhanced(self, context: AnalysisContext, request: AnalysisRequest) -> AnalysisResult:
        stages = self.stages
        video_context = request.video_context
        degraded: list[str] = []

        classification = await self._with_default(
            "context_classification",
            stages.classify_context(context, video_context),
            default_context_summary(context),
            degraded,
        )

        category_call = self._with_default(
            "category_analysis",
            stages.analyze_categories(context, classification, video_context),
            stages._complete_categories({}),
            degraded,
        )
        if request.channel_context is not None:
            origin_call = self._with_default(
                "content_origin",
                stages.detect_content_origin(context, request.channel_context, classification),
                None,
                degraded,
            )
            categories, origin = await gather_cancelling(category_call, origin_call)
        else:
            categories = await category_call
            origin = None

        risk = await self._assess_risk(context, classification, categories, video_context, degraded)

        confidence = await self._with_default(
            "confidence_analysis",
            stages.analyze_confidence(context, categories, risk),
            ConfidenceAnalysis(
                overall_confidence=DEFAULT_CONFIDENCE,
                text_clarity=DEFAULT_CONFIDENCE,
                policy_specificity=DEFAULT_CONFIDENCE,
                context_availability=DEFAULT_CONFIDENCE,
            ),
            degraded,
        )

        suggestions = await self._with_default(
            "suggestion_generation",
            stages.generate_suggestions(classification, categories, risk, video_context),
            default_suggestions(self.config),
            degraded,
        )

        if origin is not None:
            categories = {**categories, AI_GENERATED_CATEGORY: self._origin_category(origin)}

        score = calculate_overall_risk_score(categories, self.catalog)
        degraded = list(dict.fromkeys(degraded))
        notes = []
        if context.is_non_english:
            notes.append(f"non-English input detected ({context.detected_language}); results may be less accurate")

        return AnalysisResult(
            risk_score=score,
            risk_level=get_risk_level(score, self.config),
            confidence_score=confidence.overall_confidence,
            flagged_section=risk.flagged_section or NO_RISK_FLAGGED_SECTION,
            category_breakdown=categories,
            context_analysis=classification,
            highlights=generate_highlights(categories, self.config),
            suggestions=suggestions,
            risky_spans=risk.risky_spans,
            risky_phrases=risk.risky_phrases,
            risky_phrases_by_category=risk.risky_phrases_by_category,
            ai_detection=origin,
            analysis_metadata=AnalysisMetadata(
                model_used=self.gateway.describe(),
                analysis_timestamp=now_iso(),
                content_length=context.content_length,
                analysis_mode=AnalysisMode.FALLBACK if degraded else AnalysisMode.ENHANCED,
                degraded_stages=degraded,
                notes=notes,
            ),
        )

    async def _assess_risk(
        self,
        context: AnalysisContext,
        classification,
        categories: dict[str, CategoryResult],
        video_context: Optional[str],
        degraded: list[str],
    ) -> RiskAssessment:
        """Risk assessment over the whole text, fanned out per chunk when it is long"""
        text = context.decoded_text
        if context.needs_chunking:
            chunks = split_into_chunks(text, context.chunk_size, context.overlap)
        else:
            chunks = [Chunk(0, 0, text)]

        if len(chunks) > 1:
            logger.info(f"Assessing risk across {len(chunks)} chunks")

        async def assess(chunk: Chunk) -> tuple[Chunk, RiskAssessment]:
            assessment = await self._with_default(
                "risk_assessment",
                self.stages.assess_risk(chunk.text, classification, categories, video_context),
                RiskAssessment(),
                degraded,
            )
            return chunk, assessment

        results = await gather_cancelling(*(assess(chunk) for chunk in chunks))
        return merge_chunk_assessments(results, text)

    def _origin_category(self, origin: ContentOrigin) -> CategoryResult:
        return CategoryResult(
            risk_score=origin.ai_probability,
            confidence=origin.confidence,
            violations=origin.patterns,
            severity=severity_for_score(origin.ai_probability, self.config),
            explanation=origin.explanation,
        )

    async def analyze_video(self, request: VideoAnalysisRequest) -> AnalysisResult:
        """
        Multi-modal analysis: a visual summary of the media is produced first,
        then the transcript runs through the enhanced pipeline with that
        summary embedded in every prompt.
        """
        metadata = request.metadata or {}
        text = request.transcript or "\n\n".join(
            str(metadata[key]) for key in ("title", "description") if metadata.get(key)
        )
        # Reject bad input before spending a multimodal call on it
        if text:
            prepare_context(text, self.config)

        visual_summary = None
        visual_lost = False
        visual_provider = None
        with trace_calls() as visual_trace:
            try:
                response = await self.gateway.generate_multimodal(
                    prompts.VIDEO_CONTEXT_PROMPT,
                    request.media_ref,
                    transcript=request.transcript,
                    metadata=metadata,
                )
                visual_summary = response.text
                visual_lost = response.visual_context_lost
                visual_provider = response.provider
            except Unrecoverable as e:
                logger.warning(f"Visual context unavailable for {request.media_ref}: {e}")
                visual_lost = True

        if not text:
            if not visual_summary:
                raise InvalidInputError("No transcript, metadata or visual context available for analysis")
            text = visual_summary

        result = await self.analyze(AnalysisRequest(
            text=text,
            video_context=visual_summary,
            channel_context=request.channel_context,
        ))

        meta = result.analysis_metadata
        mode = AnalysisMode.MULTI_MODAL if meta.analysis_mode == AnalysisMode.ENHANCED else meta.analysis_mode
        providers = list(visual_trace.providers)
        if meta.model_used != EMERGENCY_MODEL_NAME:
            providers += [p for p in meta.model_used.split(", ") if p and p not in providers]
        notes = list(meta.notes)
        if visual_lost:
            notes.append("visual context was not available; analysis used transcript and metadata only")
        if visual_provider:
            logger.info(f"Visual context served by {visual_provider}")

        return result.model_copy(update={"analysis_metadata": meta.model_copy(update={
            "analysis_mode": mode,
            "visual_context_lost": meta.visual_context_lost or visual_lost or visual_trace.visual_context_lost,
            "provider_failovers": meta.provider_failovers + visual_trace.failovers,
            "model_used": ", ".join(providers) if providers else meta.model_used,
            "notes": notes,
        })})
