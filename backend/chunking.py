"""
Chunking - Splits long text into overlapping windows and merges results back
Spans come back from each chunk in chunk-local coordinates; they are shifted
to absolute positions, clipped to the text, and merged when they overlap or
touch. Merging is order-independent and idempotent.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from false_positives import filter_false_positives, is_false_positive
from models import SEVERITY_RANK, RiskAssessment, RiskSpan

logger = logging.getLogger(__name__)

EXPLANATION_SEPARATOR = " | "


@dataclass(frozen=True)
class Chunk:
    index: int
    start: int
    text: str

    @property
    def end(self) -> int:
        return self.start + len(self.text)


def split_into_chunks(text: str, chunk_size: int, overlap: int) -> list[Chunk]:
    """Overlapping windows of `chunk_size` characters; the last one may be shorter"""
    if chunk_size <= 0 or overlap >= chunk_size:
        raise ValueError("chunk_size must be positive and larger than overlap")
    if len(text) <= chunk_size:
        return [Chunk(0, 0, text)]

    chunks = []
    pos = 0
    while pos < len(text):
        chunks.append(Chunk(len(chunks), pos, text[pos:pos + chunk_size]))
        if pos + chunk_size >= len(text):
            break
        pos += chunk_size - overlap
    return chunks


def translate_spans(spans: Iterable[RiskSpan], offset: int, text_length: int) -> list[RiskSpan]:
    """Shift chunk-local spans by `offset` and clip them to [0, text_length)"""
    translated = []
    for span in spans:
        if span.start_index is None or span.end_index is None:
            continue
        start = max(0, span.start_index + offset)
        end = min(text_length, span.end_index + offset)
        if start >= end:
            continue
        translated.append(span.model_copy(update={"start_index": start, "end_index": end}))
    return translated


def _split_explanation(explanation: str) -> list[str]:
    return [part.strip() for part in explanation.split(EXPLANATION_SEPARATOR) if part.strip()]


def _join_explanations(*explanations: str) -> str:
    parts = []
    for explanation in explanations:
        for part in _split_explanation(explanation):
            if part not in parts:
                parts.append(part)
    return EXPLANATION_SEPARATOR.join(parts)


def _sort_key(span: RiskSpan):
    # Total order: ties on position resolve by severity (highest first), then text fields
    return (
        span.start_index,
        span.end_index,
        -SEVERITY_RANK[span.risk_level],
        span.policy_category,
        span.explanation,
        span.text,
    )


def _combine_text(prev: RiskSpan, curr: RiskSpan) -> str:
    if curr.end_index <= prev.end_index:
        return prev.text
    overlap = prev.end_index - curr.start_index
    if len(curr.text) == curr.end_index - curr.start_index and 0 <= overlap <= len(curr.text):
        return prev.text + curr.text[overlap:]
    return prev.text


def merge_spans(spans: Iterable[RiskSpan], source_text: Optional[str] = None) -> list[RiskSpan]:
    """
    Merge overlapping or adjacent spans.

    The merged span covers both ranges and takes category/risk level from the
    higher-severity input; explanations are concatenated without duplicates.
    When `source_text` is given the span text is rebuilt from it.
    """
    ordered = sorted(
        (s for s in spans if s.start_index is not None and s.end_index is not None),
        key=_sort_key,
    )

    merged: list[RiskSpan] = []
    for span in ordered:
        span = span.model_copy(update={"explanation": _join_explanations(span.explanation)})
        if merged and span.start_index <= merged[-1].end_index:
            prev = merged[-1]
            winner = span if SEVERITY_RANK[span.risk_level] > SEVERITY_RANK[prev.risk_level] else prev
            merged[-1] = prev.model_copy(update={
                "end_index": max(prev.end_index, span.end_index),
                "text": _combine_text(prev, span),
                "risk_level": winner.risk_level,
                "policy_category": winner.policy_category,
                "explanation": _join_explanations(prev.explanation, span.explanation),
            })
        else:
            merged.append(span)

    if source_text is not None:
        merged = [
            s.model_copy(update={"text": source_text[s.start_index:s.end_index]})
            for s in merged
        ]
    return merged


def union_phrases(*phrase_lists: Iterable[str]) -> list[str]:
    """Case-insensitive union, first spelling wins, order of first appearance"""
    seen = set()
    result = []
    for phrases in phrase_lists:
        for phrase in phrases:
            cleaned = phrase.strip()
            key = cleaned.lower()
            if cleaned and key not in seen:
                seen.add(key)
                result.append(cleaned)
    return result


def merge_chunk_assessments(
    results: list[tuple[Chunk, RiskAssessment]],
    source_text: str,
) -> RiskAssessment:
    """
    Reconcile per-chunk risk assessments into one.

    Scores and severity take the maximum; phrases are unioned and
    false-positive filtered (flat list and per-category map); spans are
    translated to absolute positions, filtered, and merged.
    """
    if not results:
        return RiskAssessment()

    ordered = sorted(results, key=lambda pair: pair[0].index)
    assessments = [a for _, a in ordered]

    top = max(assessments, key=lambda a: a.overall_risk_score)
    severity = max((a.severity_level for a in assessments), key=lambda level: SEVERITY_RANK[level])

    spans = []
    for chunk, assessment in ordered:
        spans.extend(translate_spans(assessment.risky_spans, chunk.start, len(source_text)))
    spans = [s for s in spans if not is_false_positive(source_text[s.start_index:s.end_index])]

    by_category: dict[str, list[str]] = {}
    for assessment in assessments:
        for category, phrases in assessment.risky_phrases_by_category.items():
            by_category[category] = union_phrases(by_category.get(category, []), phrases)
    by_category = {
        category: kept
        for category, kept in ((c, filter_false_positives(p)) for c, p in by_category.items())
        if kept
    }

    phrases = filter_false_positives(union_phrases(*(a.risky_phrases for a in assessments)))

    merged = RiskAssessment(
        overall_risk_score=top.overall_risk_score,
        flagged_section=top.flagged_section or next((a.flagged_section for a in assessments if a.flagged_section), ""),
        risk_factors=union_phrases(*(a.risk_factors for a in assessments)),
        severity_level=severity,
        risky_spans=merge_spans(spans, source_text),
        risky_phrases=phrases,
        risky_phrases_by_category=by_category,
    )
    if len(results) > 1:
        logger.info(
            f"Merged {len(results)} chunk assessments: {len(merged.risky_spans)} spans, "
            f"{len(merged.risky_phrases)} phrases"
        )
    return merged
