"""Content Risk Analyzer - Model Gateway
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Uniform access to the language-model providers.

Routing:
  - text calls go to the primary provider; on QuotaExceeded they fail over
    once to the secondary provider
  - multimodal calls always go to the primary (only it accepts images); on
    QuotaExceeded they degrade to a text-only prompt on the secondary and the
    response is flagged visual_context_lost

Every call is admitted by the TokenBudgetTracker, bounded by a per-call
timeout, and retried with capped exponential backoff on ProviderError.
Anything that exhausts retries and failover surfaces as Unrecoverable.
"""

import os
import json
import asyncio
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from budget import TokenBudgetTracker, estimate_tokens, get_budget_tracker
from config import AnalysisConfig
from errors import ModelError, ProviderError, QuotaExceeded, Unrecoverable
from media import load_frames

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 4000

# SDK exception class names (same in openai and anthropic) that mean "try again"
TRANSIENT_ERROR_NAMES = {
    "APIConnectionError",
    "APITimeoutError",
    "InternalServerError",
    "ServiceUnavailableError",
    "OverloadedError",
}
QUOTA_MARKERS = ("429", "rate limit", "rate_limit", "quota", "resource_exhausted", "too many requests")
TRANSIENT_MARKERS = ("overloaded", "503", "502", "504", "timeout", "timed out", "unavailable")


class LLMProvider:
    """A backing model. Subclasses wrap one SDK."""
    name = "provider"
    model = ""
    supports_multimodal = False

    @property
    def available(self) -> bool:
        return True

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate_multimodal(self, prompt: str, frames: list[dict]) -> str:
        raise NotImplementedError(f"{self.name} does not accept images")


class OpenAIProvider(LLMProvider):
    """Primary provider: vision-capable chat completions"""
    name = "openai"
    supports_multimodal = True

    def __init__(self, api_key: Optional[str], model: str, client=None):
        self.model = model
        self._client = client
        if self._client is None and api_key:
            try:
                from openai import AsyncOpenAI
                self._client = AsyncOpenAI(api_key=api_key)
                logger.info(f"OpenAI client initialized ({model})")
            except ImportError:
                logger.warning("openai package not installed. Run: pip install openai")

    @property
    def available(self) -> bool:
        return self._client is not None

    async def generate(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
            max_tokens=MAX_OUTPUT_TOKENS,
        )
        return response.choices[0].message.content or ""

    async def generate_multimodal(self, prompt: str, frames: list[dict]) -> str:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for frame in frames:
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:image/jpeg;base64,{frame['data']}",
                    "detail": "low",  # Low detail for speed/cost
                },
            })
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": content}],
            temperature=0,
            max_tokens=MAX_OUTPUT_TOKENS,
        )
        return response.choices[0].message.content or ""


class AnthropicProvider(LLMProvider):
    """Secondary provider: text only"""
    name = "anthropic"

    def __init__(self, api_key: Optional[str], model: str, client=None):
        self.model = model
        self._client = client
        if self._client is None and api_key:
            try:
                from anthropic import AsyncAnthropic
                self._client = AsyncAnthropic(api_key=api_key)
                logger.info(f"Anthropic client initialized ({model})")
            except ImportError:
                logger.warning("anthropic package not installed. Run: pip install anthropic")

    @property
    def available(self) -> bool:
        return self._client is not None

    async def generate(self, prompt: str) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=0,
            messages=[{"role": "user", "content": prompt}],
        )
        # Join all text blocks
        return "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )


def _status_code(exc: Exception) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_provider_error(exc: Exception, provider: Optional[str] = None) -> Exception:
    """
    Map an SDK / transport exception onto the error taxonomy.

    429 or quota wording -> QuotaExceeded; 5xx, timeouts, connection errors or
    "overloaded" -> ProviderError; any other 4xx -> Unrecoverable. Unknown
    errors without a status are treated as transient.
    """
    if isinstance(exc, (ModelError, Unrecoverable)):
        return exc

    status = _status_code(exc)
    message = str(exc).lower()

    if status == 429 or any(marker in message for marker in QUOTA_MARKERS):
        return QuotaExceeded(f"{provider} quota exceeded: {exc}", provider=provider)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ProviderError(f"{provider} timed out or disconnected: {exc!r}", provider=provider)
    if type(exc).__name__ in TRANSIENT_ERROR_NAMES:
        return ProviderError(f"{provider} transient error: {exc}", provider=provider)
    if status is not None and status >= 500:
        return ProviderError(f"{provider} returned {status}: {exc}", provider=provider)
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return ProviderError(f"{provider} unavailable: {exc}", provider=provider)
    if status is not None and 400 <= status < 500:
        return Unrecoverable(f"{provider} rejected the request ({status}): {exc}")
    return ProviderError(f"{provider} error: {exc}", provider=provider)


@dataclass
class MultiModalResponse:
    text: str
    provider: str
    visual_context_lost: bool = False


@dataclass
class CallTrace:
    """Which providers served one request, and how often it failed over"""
    providers: list[str] = field(default_factory=list)
    failovers: int = 0
    visual_context_lost: bool = False

    def record(self, provider: str) -> None:
        if provider not in self.providers:
            self.providers.append(provider)


# Request-scoped trace; child tasks inherit the same CallTrace object
_current_trace: ContextVar[Optional[CallTrace]] = ContextVar("call_trace", default=None)


@contextmanager
def trace_calls():
    trace = CallTrace()
    token = _current_trace.set(trace)
    try:
        yield trace
    finally:
        _current_trace.reset(token)


def build_fallback_prompt(prompt: str, transcript: Optional[str] = None, metadata: Optional[dict] = None) -> str:
    """Text-only rendering of a multimodal request"""
    parts = [prompt]
    if transcript:
        parts.append(f"Transcript: {transcript}")
    if metadata:
        parts.append(f"Metadata: {json.dumps(metadata, default=str)}")
    return "\n\n".join(parts)


class ModelGateway:
    def __init__(
        self,
        primary: Optional[LLMProvider] = None,
        secondary: Optional[LLMProvider] = None,
        config: Optional[AnalysisConfig] = None,
        budget: Optional[TokenBudgetTracker] = None,
        frame_loader: Callable[[str], Awaitable[list[dict]]] = load_frames,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or AnalysisConfig()
        self.primary = primary if primary is not None and primary.available else None
        self.secondary = secondary if secondary is not None and secondary.available else None
        self.budget = budget or TokenBudgetTracker(self.config)
        self._frame_loader = frame_loader
        self._sleep = sleep

        self.calls: dict[str, int] = {}
        self.errors: dict[str, int] = {}
        self.failovers = 0

    @property
    def is_configured(self) -> bool:
        return self.primary is not None or self.secondary is not None

    def describe(self) -> str:
        names = [f"{p.name}:{p.model}" for p in (self.primary, self.secondary) if p is not None]
        return ", ".join(names) or "none"

    def _record_call(self, provider: LLMProvider) -> None:
        self.calls[provider.name] = self.calls.get(provider.name, 0) + 1
        trace = _current_trace.get()
        if trace is not None:
            trace.record(f"{provider.name}:{provider.model}")

    def _record_failover(self) -> None:
        self.failovers += 1
        trace = _current_trace.get()
        if trace is not None:
            trace.failovers += 1

    async def _call_with_retry(
        self,
        provider: LLMProvider,
        call: Callable[[], Awaitable[str]],
        estimated_tokens: int,
    ) -> str:
        """
        Run one provider call under the budget with bounded retries.

        Raises QuotaExceeded immediately (the caller decides on failover) and
        Unrecoverable once retries are exhausted or the request was rejected.
        """
        attempts = self.config.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                async with self.budget.slot(estimated_tokens):
                    self._record_call(provider)
                    return await asyncio.wait_for(call(), timeout=self.config.call_timeout)
            except Exception as e:
                self.errors[provider.name] = self.errors.get(provider.name, 0) + 1
                error = classify_provider_error(e, provider.name)
                if isinstance(error, (QuotaExceeded, Unrecoverable)):
                    if error is e:
                        raise
                    raise error from e

                last_error = error
                if attempt < attempts - 1:
                    delay = min(
                        self.config.retry_backoff_base * (2 ** attempt),
                        self.config.retry_backoff_cap,
                    )
                    logger.warning(
                        f"{provider.name} call failed on attempt {attempt + 1}/{attempts} "
                        f"({error}), retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)

        raise Unrecoverable(
            f"{provider.name} failed after {attempts} attempts: {last_error}"
        ) from last_error

    async def generate(self, prompt: str) -> str:
        """Text completion: primary first, one failover to the secondary on quota"""
        text, _ = await self._generate_text(prompt)
        return text

    async def _generate_text(self, prompt: str) -> tuple[str, str]:
        if not self.is_configured:
            raise Unrecoverable("No model provider configured")

        estimated = estimate_tokens(prompt)

        if self.primary is not None:
            primary = self.primary
            try:
                text = await self._call_with_retry(primary, lambda: primary.generate(prompt), estimated)
                return text, primary.name
            except QuotaExceeded as e:
                if self.secondary is None:
                    raise Unrecoverable(f"{primary.name} quota exceeded and no secondary provider") from e
                logger.info(f"{primary.name} quota exceeded, failing over to {self.secondary.name}")
                self._record_failover()

        secondary = self.secondary
        try:
            text = await self._call_with_retry(secondary, lambda: secondary.generate(prompt), estimated)
            return text, secondary.name
        except QuotaExceeded as e:
            raise Unrecoverable(f"{secondary.name} quota exceeded after failover") from e

    async def generate_multimodal(
        self,
        prompt: str,
        media_ref: str,
        transcript: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> MultiModalResponse:
        """
        Vision + text completion on the primary provider.

        Degrades to a text-only prompt (flagged visual_context_lost) when the
        primary cannot take images, no frames could be extracted, or the
        primary is out of quota.
        """
        if not self.is_configured:
            raise Unrecoverable("No model provider configured")

        fallback_prompt = build_fallback_prompt(prompt, transcript, metadata)
        primary = self.primary

        if primary is None or not primary.supports_multimodal:
            return await self._text_only(fallback_prompt, "primary provider cannot process media")

        frames = await self._frame_loader(media_ref)
        if not frames:
            return await self._text_only(fallback_prompt, f"no frames could be extracted from {media_ref}")

        estimated = estimate_tokens(fallback_prompt, with_media=True)
        try:
            text = await self._call_with_retry(
                primary,
                lambda: primary.generate_multimodal(fallback_prompt, frames),
                estimated,
            )
            return MultiModalResponse(text=text, provider=primary.name)
        except QuotaExceeded as e:
            if self.secondary is None:
                raise Unrecoverable(f"{primary.name} quota exceeded and no secondary provider") from e
            logger.warning(
                f"{primary.name} quota exceeded for multimodal call, "
                f"falling back to text-only on {self.secondary.name}; visual context is lost"
            )
            self._record_failover()
            try:
                text = await self._call_with_retry(
                    self.secondary,
                    lambda: self.secondary.generate(fallback_prompt),
                    estimate_tokens(fallback_prompt),
                )
            except QuotaExceeded as e2:
                raise Unrecoverable(f"{self.secondary.name} quota exceeded after failover") from e2
            self._mark_visual_loss()
            return MultiModalResponse(text=text, provider=self.secondary.name, visual_context_lost=True)

    async def _text_only(self, prompt: str, reason: str) -> MultiModalResponse:
        logger.warning(f"Multimodal call degraded to text-only: {reason}")
        text, served = await self._generate_text(prompt)
        self._mark_visual_loss()
        return MultiModalResponse(text=text, provider=served, visual_context_lost=True)

    def _mark_visual_loss(self) -> None:
        trace = _current_trace.get()
        if trace is not None:
            trace.visual_context_lost = True

    def usage(self) -> dict:
        return {
            "providers": self.describe(),
            "calls": dict(self.calls),
            "errors": dict(self.errors),
            "failovers": self.failovers,
        }


def build_gateway(config: Optional[AnalysisConfig] = None) -> ModelGateway:
    """Gateway wired from OPENAI_API_KEY / ANTHROPIC_API_KEY and the shared budget"""
    config = config or AnalysisConfig()
    primary = OpenAIProvider(os.environ.get("OPENAI_API_KEY"), config.openai_model)
    secondary = AnthropicProvider(os.environ.get("ANTHROPIC_API_KEY"), config.anthropic_model)
    gateway = ModelGateway(primary, secondary, config=config, budget=get_budget_tracker(config))
    if not gateway.is_configured:
        logger.warning("No model provider API key set; every analysis will use the emergency result")
    else:
        logger.info(f"Model gateway ready: {gateway.describe()}")
    return gateway
