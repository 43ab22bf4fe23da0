import json
import sys
from pathlib import Path

import pytest

# Add backend directory to path so imports work
backend_path = Path(__file__).parent.parent
sys.path.append(str(backend_path))

from budget import TokenBudgetTracker  # noqa: E402
from config import AnalysisConfig  # noqa: E402
from model_gateway import LLMProvider, ModelGateway  # noqa: E402
from policy_catalog import PolicyCatalog  # noqa: E402


async def no_sleep(_seconds):
    return None


class FakeProvider(LLMProvider):
    """
    Scripted provider. `responder` is either a callable(prompt) -> str, or a
    list whose items are returned in order (exceptions in it are raised).
    """

    def __init__(self, name="fake", responder=None, model="fake-1", multimodal=False):
        self.name = name
        self.model = model
        self.supports_multimodal = multimodal
        self.responder = responder
        self.prompts = []
        self.multimodal_calls = []

    def _next(self, prompt):
        self.prompts.append(prompt)
        if callable(self.responder):
            result = self.responder(prompt)
        else:
            result = self.responder.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    async def generate(self, prompt):
        return self._next(prompt)

    async def generate_multimodal(self, prompt, frames):
        self.multimodal_calls.append((prompt, frames))
        return self._next(prompt)


def fast_config(**overrides) -> AnalysisConfig:
    """Config with no inter-call delay, so tests never wait on the budget"""
    values = {"inter_call_delay": 0, "max_concurrent_requests": 4}
    values.update(overrides)
    return AnalysisConfig(**values)


def make_gateway(primary=None, secondary=None, config=None, frame_loader=None) -> ModelGateway:
    config = config or fast_config()

    async def no_frames(_media_ref):
        return []

    return ModelGateway(
        primary,
        secondary,
        config=config,
        budget=TokenBudgetTracker(config, sleep=no_sleep),
        frame_loader=frame_loader or no_frames,
        sleep=no_sleep,
    )


# --- Canned stage responses ---

CONTEXT_RESPONSE = json.dumps({
    "content_type": "Gaming",
    "target_audience": "Teen",
    "monetization_impact": 40,
    "content_length": 0,
    "language_detected": "en",
})


def category_response(scores: dict) -> str:
    """{KEY: (score, severity, violations)} -> category analysis JSON"""
    return json.dumps({"categories": {
        key: {
            "risk_score": score,
            "confidence": 80,
            "violations": violations,
            "severity": severity,
            "explanation": f"{key} assessment",
        }
        for key, (score, severity, violations) in scores.items()
    }})


def risk_response(score=10, spans=None, phrases=None, by_category=None, flagged="Minor concerns") -> str:
    return json.dumps({
        "overall_risk_score": score,
        "flagged_section": flagged,
        "risk_factors": ["tone"],
        "severity_level": "LOW" if score < 40 else "HIGH",
        "risky_spans": spans or [],
        "risky_phrases": phrases or [],
        "risky_phrases_by_category": by_category or {},
    })


CONFIDENCE_RESPONSE = json.dumps({
    "overall_confidence": 82,
    "text_clarity": 90,
    "policy_specificity": 70,
    "context_availability": 60,
    "confidence_factors": ["clear language"],
})

SUGGESTIONS_RESPONSE = json.dumps({"suggestions": [
    {"title": f"Tip {i}", "text": f"Consider improvement {i}", "priority": "MEDIUM", "impact_score": 60}
    for i in range(6)
]})

BASIC_RESPONSE = json.dumps({
    "risk_score": 30,
    "risk_level": "LOW",
    "flagged_section": "Some mild language",
    "highlights": [{"category": "Profanity", "risk": "low", "score": 30}],
    "suggestions": [{"title": "Tone", "text": "Consider softer wording"}],
})

ORIGIN_RESPONSE = json.dumps({
    "ai_probability": 50,
    "confidence": 70,
    "patterns": ["uniform sentence length"],
    "indicators": {"repetitive_language": 40},
    "explanation": "Some structured phrasing.",
})

# Prompt markers -> stage names, checked in order
STAGE_MARKERS = [
    ("Classify the following content", "context"),
    ("Analyze this video transcript for AI generation", "origin"),
    ("Score the content below against each policy category", "categories"),
    ("You are assessing policy risk", "risk"),
    ("Rate how confident", "confidence"),
    ("Generate specific, actionable suggestions", "suggestions"),
    ("Act as an expert policy analyst", "basic"),
    ("Analyze this video content", "video"),
]


def stage_of(prompt: str) -> str:
    for marker, stage in STAGE_MARKERS:
        if marker in prompt:
            return stage
    return "unknown"


def stage_responder(overrides=None):
    """Responder answering every stage with a canned response; overrides win"""
    responses = {
        "context": CONTEXT_RESPONSE,
        "origin": ORIGIN_RESPONSE,
        "categories": category_response({}),
        "risk": risk_response(),
        "confidence": CONFIDENCE_RESPONSE,
        "suggestions": SUGGESTIONS_RESPONSE,
        "basic": BASIC_RESPONSE,
        "video": "A person talks to the camera in a kitchen.",
    }
    responses.update(overrides or {})

    def respond(prompt):
        value = responses.get(stage_of(prompt), "")
        if callable(value):
            value = value(prompt)
        if isinstance(value, BaseException):
            raise value
        return value

    return respond


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def catalog():
    return PolicyCatalog()
