"""Content Risk Analyzer - Structured Output Extractor
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Turns a raw model response into a validated pydantic object.

Repair cascade, tried in order until one candidate validates:
  1. direct          json.loads on the text as-is
  2. isolate         strip prose / markdown fences, keep the outermost balanced {...}
  3. repair          trailing commas, \\' escapes, smart quotes, then json_repair
  4. escape-quotes   escape stray quotes inside string values (never keys)
  5. fields          regex-recover individual schema fields from whatever is there

Each strategy exposes attempt(text) and raises ValueError when it cannot
produce an object. Validation against the (lenient) schema clamps numbers and
fills defaults, so a partially-correct answer still yields a usable object.
"""

import re
import json
import typing
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, ValidationError

from errors import JsonExtractionFailed
from models import CategoryResult

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
SMART_QUOTES = {"“": '"', "”": '"', "‘": "'", "’": "'"}
LITERAL_STARTS = ("true", "false", "null")

# Category blocks like "CONTENT_SAFETY_VIOLENCE": { ...flat fields... }
CATEGORY_BLOCK_RE = re.compile(r'"([A-Za-z][A-Za-z0-9_]*)"\s*:\s*\{([^{}]*)\}')


def _ensure_container(value: Any, allow_empty: bool = True) -> Any:
    # An explicit {} is a valid answer whose fields all take their defaults
    if isinstance(value, (dict, list)) and (value or allow_empty):
        return value
    raise ValueError(f"expected a JSON object, got {type(value).__name__}")


def strip_fences(text: str) -> str:
    match = FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def find_balanced_block(text: str) -> str:
    """Outermost balanced {...} (or [...]) span, honouring string literals"""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        raise ValueError("no JSON object in text")
    start = min(starts)
    opener = text[start]
    closer = "}" if opener == "{" else "]"

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    raise ValueError("unbalanced JSON block (truncated response?)")


def basic_sanitize(text: str) -> str:
    for smart, plain in SMART_QUOTES.items():
        text = text.replace(smart, plain)
    text = text.replace("\\'", "'")
    return TRAILING_COMMA_RE.sub(r"\1", text)


def _next_significant(text: str, i: int) -> int:
    while i < len(text) and text[i].isspace():
        i += 1
    return i


def _closes_value_string(text: str, i: int) -> bool:
    """Is the quote at text[i] the real end of a string value?"""
    j = _next_significant(text, i + 1)
    if j >= len(text) or text[j] in "}]":
        return True
    if text[j] != ",":
        return False
    k = _next_significant(text, j + 1)
    if k >= len(text):
        return True
    nxt = text[k]
    return nxt in '"{[-' or nxt.isdigit() or text.startswith(LITERAL_STARTS, k)


def escape_inner_quotes(text: str) -> str:
    """
    Escape unescaped quotes that sit inside string values.

    Keys are left alone: a string is a key when it opens directly inside an
    object after '{' or ','. Values (after ':' or inside arrays) close only
    on a quote followed by ',', '}' or ']'.
    """
    out = []
    stack: list[str] = []
    last = ""
    in_string = False
    is_value = False
    i = 0

    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\" and i + 1 < len(text):
                out.append(text[i:i + 2])
                i += 2
                continue
            if ch == '"':
                if not is_value or _closes_value_string(text, i):
                    in_string = False
                    last = '"'
                    out.append(ch)
                else:
                    out.append('\\"')
                i += 1
                continue
            out.append(ch)
            i += 1
            continue

        if ch == '"':
            in_string = True
            is_value = last == ":" or (bool(stack) and stack[-1] == "[")
        elif ch in "{[":
            stack.append(ch)
            last = ch
        elif ch in "}]":
            if stack:
                stack.pop()
            last = ch
        elif not ch.isspace():
            last = ch
        out.append(ch)
        i += 1

    return "".join(out)


class ExtractionStrategy:
    name = "strategy"

    def attempt(self, text: str) -> Any:
        raise NotImplementedError


class DirectParse(ExtractionStrategy):
    name = "direct"

    def attempt(self, text: str) -> Any:
        return _ensure_container(json.loads(text.strip()))


class IsolateJsonBlock(ExtractionStrategy):
    name = "isolate"

    def attempt(self, text: str) -> Any:
        return _ensure_container(json.loads(find_balanced_block(strip_fences(text))))


class StructuralRepair(ExtractionStrategy):
    name = "repair"

    def attempt(self, text: str) -> Any:
        body = strip_fences(text)
        try:
            body = find_balanced_block(body)
        except ValueError:
            # Truncated or unwrapped; hand the tail from the first brace to the repairer
            starts = [i for i in (body.find("{"), body.find("[")) if i >= 0]
            if not starts:
                raise
            body = body[min(starts):]

        sanitized = basic_sanitize(body)
        try:
            return _ensure_container(json.loads(sanitized))
        except ValueError:
            pass

        try:
            repaired = repair_json(sanitized, return_objects=True)
        except Exception as e:
            raise ValueError(f"json_repair failed: {e}") from e
        # json_repair turns unparseable text into {}; that is not an answer
        return _ensure_container(repaired, allow_empty=False)


class EscapeInnerQuotes(ExtractionStrategy):
    name = "escape-quotes"

    def attempt(self, text: str) -> Any:
        body = strip_fences(text)
        start = min((i for i in (body.find("{"), body.find("[")) if i >= 0), default=-1)
        if start < 0:
            raise ValueError("no JSON object in text")
        fixed = basic_sanitize(escape_inner_quotes(body[start:]))
        return _ensure_container(json.loads(find_balanced_block(fixed)))


def _field_kind(annotation: Any) -> Optional[str]:
    origin = typing.get_origin(annotation)
    if origin is typing.Union:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return _field_kind(args[0]) if len(args) == 1 else None
    if origin is list:
        args = typing.get_args(annotation)
        return "list" if args and args[0] is str else None
    if annotation in (int, float):
        return "number"
    if annotation is bool:
        return "bool"
    if annotation is str or (isinstance(annotation, type) and issubclass(annotation, Enum)):
        return "string"
    return None


def _unescape(value: str) -> str:
    return value.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")


def extract_fields(text: str, schema: type[BaseModel]) -> dict:
    """Regex-recover the flat fields of `schema` from arbitrary text"""
    found = {}
    for name, info in schema.model_fields.items():
        kind = _field_kind(info.annotation)
        key = re.escape(name)
        if kind == "number":
            m = re.search(rf'"{key}"\s*:\s*"?(-?\d+(?:\.\d+)?)', text)
            if m:
                found[name] = float(m.group(1))
        elif kind == "string":
            m = re.search(rf'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
            if m:
                found[name] = _unescape(m.group(1))
        elif kind == "bool":
            m = re.search(rf'"{key}"\s*:\s*(true|false)', text, re.IGNORECASE)
            if m:
                found[name] = m.group(1).lower() == "true"
        elif kind == "list":
            m = re.search(rf'"{key}"\s*:\s*\[([^\]]*)\]', text)
            if m:
                found[name] = [_unescape(v) for v in re.findall(r'"((?:[^"\\]|\\.)*)"', m.group(1))]
    return found


def extract_category_blocks(text: str) -> dict:
    """Field extraction for category analysis responses"""
    categories = {}
    for key, body in CATEGORY_BLOCK_RE.findall(text):
        if key.lower() == "categories":
            continue
        fields = extract_fields("{" + body + "}", CategoryResult)
        if fields:
            fields.setdefault("explanation", "Analysis partially extracted from malformed response")
            categories[key] = fields
    return {"categories": categories} if categories else {}


class FieldExtraction(ExtractionStrategy):
    """Last resort: recover known fields one by one with regexes"""
    name = "fields"

    def __init__(self, schema: type[BaseModel], field_extractor: Optional[Callable[[str], dict]] = None):
        self.schema = schema
        self.field_extractor = field_extractor

    def attempt(self, text: str) -> Any:
        if self.field_extractor is not None:
            data = self.field_extractor(text)
        else:
            data = extract_fields(text, self.schema)
        if not data:
            raise ValueError(f"no {self.schema.__name__} fields found in text")
        return data


def default_strategies() -> list[ExtractionStrategy]:
    return [DirectParse(), IsolateJsonBlock(), StructuralRepair(), EscapeInnerQuotes()]


@dataclass
class ExtractionResult(Generic[T]):
    data: T
    strategy: str
    raw: str


class StructuredOutputExtractor:
    def __init__(self, strategies: Optional[list[ExtractionStrategy]] = None):
        self.strategies = strategies if strategies is not None else default_strategies()

    def extract(
        self,
        text: Optional[str],
        schema: type[T],
        context: Optional[dict] = None,
        field_extractor: Optional[Callable[[str], dict]] = None,
    ) -> ExtractionResult[T]:
        """
        Run the cascade and validate against `schema`.

        Raises:
            JsonExtractionFailed: no strategy produced a schema-valid object;
                the raw response is attached for logging
        """
        if text is None or not text.strip():
            raise JsonExtractionFailed(f"Empty response while extracting {schema.__name__}", raw_text=text or "")

        strategies = list(self.strategies) + [FieldExtraction(schema, field_extractor)]
        for strategy in strategies:
            try:
                candidate = strategy.attempt(text)
            except ValueError as e:
                logger.debug(f"{schema.__name__}: strategy '{strategy.name}' failed: {e}")
                continue
            try:
                data = schema.model_validate(candidate, context=context)
            except ValidationError as e:
                logger.debug(f"{schema.__name__}: '{strategy.name}' output failed validation ({e.error_count()} errors)")
                continue

            if strategy.name != DirectParse.name:
                logger.info(f"Recovered {schema.__name__} with '{strategy.name}' strategy")
            return ExtractionResult(data=data, strategy=strategy.name, raw=text)

        logger.error(f"All extraction strategies failed for {schema.__name__}: {text[:200]!r}")
        raise JsonExtractionFailed(f"Could not extract {schema.__name__} from model response", raw_text=text)
