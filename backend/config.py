"""Content Risk Analyzer - Configuration
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Every tunable of the analysis pipeline lives here. Defaults mirror the
production values; each one can be overridden with an ANALYZER_* environment
variable (or a .env file loaded by the service entry point).
"""

import json
import os
import logging
from dataclasses import dataclass, field, fields
from typing import Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "ANALYZER_"

# --- Text processing ---
CHUNK_SIZE = 3500
CHUNK_OVERLAP = 250
MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 100_000

# --- Output limits ---
MAX_SUGGESTIONS = 12
MIN_SUGGESTIONS = 5
HIGHLIGHT_LIMIT = 4
HIGHLIGHT_MIN_SCORE = 20

# --- Budget ---
TOKENS_PER_MINUTE = 250_000
TOKEN_WARNING_THRESHOLD = 0.8      # Block new calls above 80% of the ceiling
RATE_WINDOW_SECONDS = 60.0
MAX_REQUESTS_PER_WINDOW = 80
MAX_CONCURRENT_REQUESTS = 1
INTER_CALL_DELAY = 0.5

# --- Retry policy ---
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0
RETRY_BACKOFF_CAP = 30.0
CALL_TIMEOUT = 30.0
PARSE_RETRIES = 1

# --- Thresholds ---
# Final report level: <=25 LOW, <=65 MEDIUM, else HIGH.
RISK_LEVEL_LOW_MAX = 25
RISK_LEVEL_MEDIUM_MAX = 65
# Per-category severity derived from a score: >=70 HIGH, >=40 MEDIUM.
CATEGORY_HIGH_THRESHOLD = 70
CATEGORY_MEDIUM_THRESHOLD = 40

EMERGENCY_RISK_SCORE = 50
BASIC_DEFAULT_CONFIDENCE = 75

DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-haiku-latest"


@dataclass
class AnalysisConfig:
    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    min_text_length: int = MIN_TEXT_LENGTH
    max_text_length: int = MAX_TEXT_LENGTH

    max_suggestions: int = MAX_SUGGESTIONS
    min_suggestions: int = MIN_SUGGESTIONS
    highlight_limit: int = HIGHLIGHT_LIMIT
    highlight_min_score: int = HIGHLIGHT_MIN_SCORE

    tokens_per_minute: int = TOKENS_PER_MINUTE
    token_warning_threshold: float = TOKEN_WARNING_THRESHOLD
    rate_window_seconds: float = RATE_WINDOW_SECONDS
    max_requests_per_window: int = MAX_REQUESTS_PER_WINDOW
    max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS
    inter_call_delay: float = INTER_CALL_DELAY

    max_retries: int = MAX_RETRIES
    retry_backoff_base: float = RETRY_BACKOFF_BASE
    retry_backoff_cap: float = RETRY_BACKOFF_CAP
    call_timeout: float = CALL_TIMEOUT
    parse_retries: int = PARSE_RETRIES

    risk_level_low_max: int = RISK_LEVEL_LOW_MAX
    risk_level_medium_max: int = RISK_LEVEL_MEDIUM_MAX
    category_high_threshold: int = CATEGORY_HIGH_THRESHOLD
    category_medium_threshold: int = CATEGORY_MEDIUM_THRESHOLD

    emergency_risk_score: int = EMERGENCY_RISK_SCORE
    basic_default_confidence: int = BASIC_DEFAULT_CONFIDENCE

    # None = use the policy catalog's weight table
    category_weights: Optional[dict[str, float]] = None
    policy_db_path: Optional[str] = None

    openai_model: str = DEFAULT_OPENAI_MODEL
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL

    def __post_init__(self):
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        if self.min_suggestions > self.max_suggestions:
            raise ValueError("min_suggestions cannot exceed max_suggestions")
        if not 0 < self.token_warning_threshold <= 1:
            raise ValueError("token_warning_threshold must be in (0, 1]")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[dict] = None) -> "AnalysisConfig":
        """Build a config from ANALYZER_* variables, falling back to defaults."""
        env = os.environ if env is None else env
        overrides = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            try:
                if f.name == "category_weights":
                    weights = json.loads(raw)
                    if not isinstance(weights, dict):
                        raise ValueError("expected a JSON object")
                    overrides[f.name] = {str(k): float(v) for k, v in weights.items()}
                elif f.type in (int, "int"):
                    overrides[f.name] = int(raw)
                elif f.type in (float, "float"):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError as e:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r} ({e})") from e

        if overrides:
            logger.info(f"Config overrides from environment: {sorted(overrides)}")
        return cls(**overrides)
