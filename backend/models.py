"""Content Risk Analyzer - Data Model
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Pydantic models for every shape the pipeline passes around.

Stage schemas (CategoryResult, RiskAssessment, ...) are deliberately lenient:
model output is untrusted, so numbers are coerced and clamped to 0-100,
unknown enum values fall back to LOW and missing fields take their defaults
instead of failing validation. The final AnalysisResult is strict and frozen.
"""

import re
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AnalysisMode(str, Enum):
    ENHANCED = "enhanced"
    BASIC = "basic"
    FALLBACK = "fallback"
    EMERGENCY = "emergency"
    MULTI_MODAL = "multi-modal"


# Synonyms models use instead of the three canonical levels
_LEVEL_ALIASES = {
    "CRITICAL": "HIGH",
    "SEVERE": "HIGH",
    "MODERATE": "MEDIUM",
    "MED": "MEDIUM",
    "MINIMAL": "LOW",
    "NONE": "LOW",
}

SEVERITY_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def clamp_score(value: Any, default: int = 0) -> int:
    """Coerce anything number-ish ("75", "75%", 75.4, None) to an int in [0, 100]"""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _NUMBER_RE.search(str(value))
        if not match:
            return default
        number = float(match.group())
    if number != number:  # NaN
        return default
    return int(round(max(0.0, min(100.0, number))))


def coerce_level(value: Any, default: str = "LOW") -> str:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        return default
    key = value.strip().upper()
    key = _LEVEL_ALIASES.get(key, key)
    return key if key in ("LOW", "MEDIUM", "HIGH") else default


def coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return [str(value)]


def coerce_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value if v is not None)
    return str(value)


# --- Stage schemas ---

class CategoryResult(BaseModel):
    """Per-policy-category verdict"""
    risk_score: int = 0
    confidence: int = 0
    violations: list[str] = Field(default_factory=list)
    severity: RiskLevel = RiskLevel.LOW
    explanation: str = ""

    @field_validator("risk_score", "confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)

    @field_validator("violations", mode="before")
    @classmethod
    def _violations(cls, v):
        return coerce_str_list(v)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        return coerce_level(v)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return coerce_str(v)


class CategoryBatch(BaseModel):
    """Category analysis response: {"categories": {KEY: CategoryResult}}"""
    categories: dict[str, CategoryResult] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data):
        # Models answer either {"categories": {...}} or the bare mapping
        if isinstance(data, dict) and not isinstance(data.get("categories"), dict):
            data = {"categories": data}
        if not isinstance(data, dict):
            return {"categories": {}}
        raw = data.get("categories") or {}
        return {"categories": {
            str(key).strip().upper(): value
            for key, value in raw.items()
            if isinstance(value, dict)
        }}


class ContextClassification(BaseModel):
    content_type: str = "general"
    target_audience: str = "General Audience"
    monetization_impact: int = 50
    content_length: int = 0
    language_detected: str = "en"

    @field_validator("monetization_impact", mode="before")
    @classmethod
    def _impact(cls, v):
        return clamp_score(v, default=50)

    @field_validator("content_length", mode="before")
    @classmethod
    def _length(cls, v):
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 0

    @field_validator("content_type", "target_audience", "language_detected", mode="before")
    @classmethod
    def _text(cls, v, info: ValidationInfo):
        text = coerce_str(v).strip()
        return text or cls.model_fields[info.field_name].default


class RiskSpan(BaseModel):
    """A flagged range of the analyzed text. Indices are [start, end)."""
    text: str = ""
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    risk_level: RiskLevel = RiskLevel.LOW
    policy_category: str = ""
    explanation: str = ""

    @field_validator("risk_level", mode="before")
    @classmethod
    def _level(cls, v):
        return coerce_level(v)

    @field_validator("text", "policy_category", "explanation", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_str(v)

    @model_validator(mode="after")
    def _ordered(self):
        if self.start_index is not None and self.end_index is not None:
            if self.start_index < 0 or self.start_index >= self.end_index:
                raise ValueError(
                    f"invalid span range [{self.start_index}, {self.end_index})"
                )
        return self


def _locate_span(span: RiskSpan, source: Optional[str]) -> Optional[RiskSpan]:
    """Fill in missing indices by searching the source text; None if impossible"""
    if span.start_index is not None and span.end_index is not None:
        if source is not None and span.end_index > len(source):
            return None
        if source is not None and not span.text:
            span = span.model_copy(update={"text": source[span.start_index:span.end_index]})
        return span
    if not source or not span.text.strip():
        return None
    start = source.lower().find(span.text.strip().lower())
    if start < 0:
        return None
    end = start + len(span.text.strip())
    return span.model_copy(update={"start_index": start, "end_index": end, "text": source[start:end]})


class RiskAssessment(BaseModel):
    overall_risk_score: int = 0
    flagged_section: str = ""
    risk_factors: list[str] = Field(default_factory=list)
    severity_level: RiskLevel = RiskLevel.LOW
    risky_spans: list[RiskSpan] = Field(default_factory=list)
    risky_phrases: list[str] = Field(default_factory=list)
    risky_phrases_by_category: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("overall_risk_score", mode="before")
    @classmethod
    def _score(cls, v):
        return clamp_score(v)

    @field_validator("severity_level", mode="before")
    @classmethod
    def _level(cls, v):
        return coerce_level(v)

    @field_validator("flagged_section", mode="before")
    @classmethod
    def _section(cls, v):
        return coerce_str(v)

    @field_validator("risk_factors", "risky_phrases", mode="before")
    @classmethod
    def _lists(cls, v):
        return coerce_str_list(v)

    @field_validator("risky_phrases_by_category", mode="before")
    @classmethod
    def _phrase_map(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): coerce_str_list(phrases) for k, phrases in v.items()}

    @field_validator("risky_spans", mode="before")
    @classmethod
    def _spans(cls, v, info: ValidationInfo):
        """Keep only spans that validate; locate missing indices in the analyzed text"""
        if not isinstance(v, list):
            return []
        source = (info.context or {}).get("source_text")
        spans = []
        for item in v:
            try:
                span = item if isinstance(item, RiskSpan) else RiskSpan.model_validate(item)
            except ValidationError as e:
                logger.debug(f"Dropping malformed span {item!r}: {e.error_count()} error(s)")
                continue
            located = _locate_span(span, source)
            if located is not None:
                spans.append(located)
        return spans


class ConfidenceAnalysis(BaseModel):
    overall_confidence: int = 0
    text_clarity: int = 0
    policy_specificity: int = 0
    context_availability: int = 0
    confidence_factors: list[str] = Field(default_factory=list)

    @field_validator(
        "overall_confidence", "text_clarity", "policy_specificity", "context_availability",
        mode="before",
    )
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)

    @field_validator("confidence_factors", mode="before")
    @classmethod
    def _factors(cls, v):
        return coerce_str_list(v)


class Suggestion(BaseModel):
    title: str = ""
    text: str = ""
    priority: Priority = Priority.LOW
    impact_score: int = 0

    @field_validator("title", "text", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_str(v).strip()

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        default = cls.model_fields["priority"].default
        return coerce_level(v, default=default.value)

    @field_validator("impact_score", mode="before")
    @classmethod
    def _impact(cls, v):
        return clamp_score(v, default=cls.model_fields["impact_score"].default)


class BasicSuggestion(Suggestion):
    """Basic tier suggestions only carry title/text; the rest defaults to MEDIUM/50"""
    priority: Priority = Priority.MEDIUM
    impact_score: int = 50


def _suggestion_items(data) -> list[dict]:
    if isinstance(data, dict):
        data = data.get("suggestions", [])
    if not isinstance(data, list):
        return []
    return [
        item for item in data
        if isinstance(item, dict) and (item.get("title") or item.get("text"))
    ]


class SuggestionBatch(BaseModel):
    suggestions: list[Suggestion] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _wrap(cls, data):
        return {"suggestions": _suggestion_items(data)}


class ContentOrigin(BaseModel):
    """Content-origin (AI-generated) detection"""
    ai_probability: int = 0
    raw_probability: int = 0
    confidence: int = 0
    patterns: list[str] = Field(default_factory=list)
    indicators: dict[str, int] = Field(default_factory=dict)
    explanation: str = ""
    content_type: str = "general"

    @field_validator("ai_probability", "raw_probability", "confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(v)

    @field_validator("patterns", mode="before")
    @classmethod
    def _patterns(cls, v):
        return coerce_str_list(v)

    @field_validator("indicators", mode="before")
    @classmethod
    def _indicators(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): clamp_score(score) for k, score in v.items()}

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return coerce_str(v)


class BasicHighlight(BaseModel):
    category: str = ""
    risk: str = ""
    score: int = 0

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, v):
        return clamp_score(v)

    @field_validator("category", "risk", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_str(v)


class BasicAnalysis(BaseModel):
    """Single-prompt response used by the basic tier"""
    risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    flagged_section: str = ""
    highlights: list[BasicHighlight] = Field(default_factory=list)
    suggestions: list[BasicSuggestion] = Field(default_factory=list)

    @field_validator("risk_score", mode="before")
    @classmethod
    def _score(cls, v):
        return clamp_score(v)

    @field_validator("risk_level", mode="before")
    @classmethod
    def _level(cls, v):
        return coerce_level(v)

    @field_validator("flagged_section", mode="before")
    @classmethod
    def _section(cls, v):
        return coerce_str(v)

    @field_validator("highlights", mode="before")
    @classmethod
    def _highlights(cls, v):
        if not isinstance(v, list):
            return []
        return [h for h in v if isinstance(h, dict) and h.get("category")]

    @field_validator("suggestions", mode="before")
    @classmethod
    def _suggestions(cls, v):
        return _suggestion_items(v)


# --- Inputs ---

class ChannelContext(BaseModel):
    """Public channel facts used by content-origin detection"""
    channel_id: str = ""
    title: str = ""
    description: str = ""
    account_date: Optional[str] = None
    subscriber_count: int = 0
    video_count: int = 0
    view_count: int = 0
    # Channel-level AI likelihood from upload/engagement heuristics, 0-100
    ai_probability: int = 0


class AnalysisRequest(BaseModel):
    # Emptiness and length bounds are checked by context preparation so the
    # caller gets EmptyInputError / InvalidInputError rather than a validation error
    text: str
    video_context: Optional[str] = None
    channel_context: Optional[ChannelContext] = None


class VideoAnalysisRequest(BaseModel):
    media_ref: str
    transcript: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    channel_context: Optional[ChannelContext] = None


# --- Output ---

class Highlight(BaseModel):
    category: str
    risk: str
    score: int = Field(ge=0, le=100)
    confidence: int = Field(ge=0, le=100)


class AnalysisMetadata(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_used: str
    analysis_timestamp: str
    processing_time_ms: int = 0
    content_length: int = 0
    analysis_mode: AnalysisMode
    visual_context_lost: bool = False
    degraded_stages: list[str] = Field(default_factory=list)
    provider_failovers: int = 0
    notes: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Final report. Built once per request and never mutated afterwards."""
    model_config = ConfigDict(frozen=True)

    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    confidence_score: int = Field(ge=0, le=100)
    flagged_section: str = ""
    category_breakdown: dict[str, CategoryResult] = Field(default_factory=dict)
    context_analysis: ContextClassification = Field(default_factory=ContextClassification)
    highlights: list[Highlight] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    risky_spans: list[RiskSpan] = Field(default_factory=list)
    risky_phrases: list[str] = Field(default_factory=list)
    risky_phrases_by_category: dict[str, list[str]] = Field(default_factory=dict)
    ai_detection: Optional[ContentOrigin] = None
    analysis_metadata: AnalysisMetadata
