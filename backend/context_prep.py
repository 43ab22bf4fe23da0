"""
Context Preparation - Normalizes raw input before any model call
Decodes HTML entities, guesses the script/language and decides whether the
text has to be chunked. Pure function of the input and the config.
"""

import re
import html
import logging
from dataclasses import dataclass
from typing import Optional

from config import AnalysisConfig
from errors import EmptyInputError, InvalidInputError

logger = logging.getLogger(__name__)

# Unicode-range heuristics. Kana is checked before CJK ideographs because
# Japanese text mixes both.
LANGUAGE_PATTERNS = [
    ("Arabic", re.compile(r"[؀-ۿݐ-ݿ]")),
    ("Japanese", re.compile(r"[぀-ゟ゠-ヿ]")),
    ("Chinese", re.compile(r"[一-鿿㐀-䶿]")),
    ("Korean", re.compile(r"[가-힯ᄀ-ᇿ]")),
    ("Thai", re.compile(r"[฀-๿]")),
    ("Hindi", re.compile(r"[ऀ-ॿ]")),
]
DEFAULT_LANGUAGE = "English"


@dataclass(frozen=True)
class AnalysisContext:
    text: str
    decoded_text: str
    detected_language: str
    is_non_english: bool
    needs_chunking: bool
    chunk_size: int
    overlap: int

    @property
    def content_length(self) -> int:
        return len(self.decoded_text)


def detect_language(text: str) -> str:
    """Best-effort script detection, English when nothing else matches"""
    for name, pattern in LANGUAGE_PATTERNS:
        if pattern.search(text):
            return name
    return DEFAULT_LANGUAGE


def decode_entities(text: str) -> str:
    # Transcripts frequently arrive double-encoded (&amp;#39;)
    return html.unescape(html.unescape(text))


def prepare_context(text: Optional[str], config: Optional[AnalysisConfig] = None) -> AnalysisContext:
    """
    Validate and normalize one request's text.

    Raises:
        EmptyInputError: text is missing or blank after trimming
        InvalidInputError: text is outside the configured length bounds
    """
    config = config or AnalysisConfig()

    if text is None or not text.strip():
        raise EmptyInputError("No text provided for analysis")

    length = len(text.strip())
    if length < config.min_text_length:
        raise InvalidInputError(
            f"Text too short for analysis ({length} < {config.min_text_length} characters)"
        )
    if length > config.max_text_length:
        raise InvalidInputError(
            f"Text too long for analysis ({length} > {config.max_text_length} characters)"
        )

    language = detect_language(text)
    is_non_english = language != DEFAULT_LANGUAGE
    if is_non_english:
        logger.warning(f"Content appears to be in {language}; analysis quality may be reduced")

    decoded = decode_entities(text)

    return AnalysisContext(
        text=text,
        decoded_text=decoded,
        detected_language=language,
        is_non_english=is_non_english,
        needs_chunking=len(decoded) > config.chunk_size,
        chunk_size=config.chunk_size,
        overlap=config.chunk_overlap,
    )
