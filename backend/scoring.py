"""Content Risk Analyzer - Score Aggregation
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Weighted aggregation of per-category scores into the final 0-100 risk score.

Two threshold tables exist on purpose and are NOT the same:
  - final report level:     <=25 LOW, <=65 MEDIUM, else HIGH
  - per-category severity:  >=70 HIGH, >=40 MEDIUM, else LOW
"""

import logging
from typing import Optional

from config import AnalysisConfig
from models import CategoryResult, Highlight, RiskLevel
from policy_catalog import PolicyCatalog

logger = logging.getLogger(__name__)

# Score used for a category that only reports a severity
SEVERITY_FALLBACK_SCORES = {
    RiskLevel.HIGH: 80,
    RiskLevel.MEDIUM: 50,
    RiskLevel.LOW: 20,
}

# Cumulative-risk heuristic
HIGH_RISK_SCORE = 80
MEDIUM_RISK_SCORE = 40
LOW_RISK_SCORE = 20
CONCERNING_SCORE = 30


def category_score(result: CategoryResult) -> int:
    """The category's risk score, or a severity-derived score when none was given"""
    if result.risk_score > 0:
        return result.risk_score
    # A zero score with a non-LOW severity means the model only gave a level
    if result.severity != RiskLevel.LOW:
        return SEVERITY_FALLBACK_SCORES[result.severity]
    return 0


def calculate_overall_risk_score(
    categories: dict[str, CategoryResult],
    catalog: Optional[PolicyCatalog] = None,
) -> int:
    """
    Weighted average of category scores plus bounded cumulative-risk boosts.

    Boost (first match wins): any category >=80 -> +20; 3+ in [40,80) -> +15;
    2 in [40,80) -> +10; 3+ in [20,40) or 1 in [40,80) -> +5. Capped at 100.
    Then a floor: 4+ categories >=30 -> at least 35; 2+ -> at least 25.
    """
    if not categories:
        return 0

    catalog = catalog or PolicyCatalog()
    total = 0.0
    total_weight = 0.0
    scores = []
    for key, result in categories.items():
        weight = catalog.get_weight(key)
        score = category_score(result)
        scores.append(score)
        total += score * weight
        total_weight += weight

    average = total / total_weight if total_weight > 0 else 0.0

    high = sum(1 for s in scores if s >= HIGH_RISK_SCORE)
    medium = sum(1 for s in scores if MEDIUM_RISK_SCORE <= s < HIGH_RISK_SCORE)
    low = sum(1 for s in scores if LOW_RISK_SCORE <= s < MEDIUM_RISK_SCORE)

    if high:
        boost = 20
    elif medium >= 3:
        boost = 15
    elif medium >= 2:
        boost = 10
    elif low >= 3 or medium >= 1:
        boost = 5
    else:
        boost = 0
    adjusted = min(100.0, average + boost)

    concerning = sum(1 for s in scores if s >= CONCERNING_SCORE)
    if concerning >= 4:
        adjusted = max(adjusted, 35)
    elif concerning >= 2:
        adjusted = max(adjusted, 25)

    final = int(round(max(0.0, min(100.0, adjusted))))
    logger.debug(f"Overall risk: avg={average:.1f} boost={boost} concerning={concerning} -> {final}")
    return final


def get_risk_level(score: int, config: Optional[AnalysisConfig] = None) -> RiskLevel:
    config = config or AnalysisConfig()
    if score <= config.risk_level_low_max:
        return RiskLevel.LOW
    if score <= config.risk_level_medium_max:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def severity_for_score(score: int, config: Optional[AnalysisConfig] = None) -> RiskLevel:
    config = config or AnalysisConfig()
    if score >= config.category_high_threshold:
        return RiskLevel.HIGH
    if score >= config.category_medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def generate_highlights(
    categories: dict[str, CategoryResult],
    config: Optional[AnalysisConfig] = None,
) -> list[Highlight]:
    """
    Top categories by score, strictly above the minimum score.

    Ranked by category_score, the same value the aggregate uses, so a
    severity-only category shows up here too.
    """
    config = config or AnalysisConfig()
    scored = [(key, result, category_score(result)) for key, result in categories.items()]
    ranked = sorted(
        (item for item in scored if item[2] > config.highlight_min_score),
        key=lambda item: item[2],
        reverse=True,
    )
    return [
        Highlight(
            category=key.replace("_", " "),
            risk=result.severity.value,
            score=score,
            confidence=result.confidence,
        )
        for key, result, score in ranked[:config.highlight_limit]
    ]


def normalize_batch_scores(scores: list[float]) -> list[int]:
    """
    Bring a batch of scores onto the 0-100 scale.

    Models sometimes answer on 0-5 or 0-10 scales; the batch maximum decides
    the multiplier. Anything above 100 is capped.
    """
    if not scores:
        return []
    top = max(scores)
    if 0 < top <= 5:
        logger.warning("Detected 0-5 scale, normalizing scores by 20x")
        factor = 20
    elif 5 < top <= 10:
        logger.warning("Detected 0-10 scale, normalizing scores by 10x")
        factor = 10
    else:
        factor = 1
    return [int(round(max(0.0, min(100.0, s * factor)))) for s in scores]
