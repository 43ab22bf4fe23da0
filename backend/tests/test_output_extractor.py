import json
from unittest.mock import patch

import pytest

from errors import JsonExtractionFailed
from models import (
    BasicAnalysis,
    CategoryBatch,
    CategoryResult,
    ContextClassification,
    RiskAssessment,
    RiskLevel,
    SuggestionBatch,
)
from output_extractor import (
    EscapeInnerQuotes,
    StructuralRepair,
    StructuredOutputExtractor,
    escape_inner_quotes,
    extract_category_blocks,
    extract_fields,
    find_balanced_block,
    strip_fences,
)


@pytest.fixture
def extractor():
    return StructuredOutputExtractor()


class TestHelpers:
    def test_strip_fences(self):
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fences('  {"a": 1} ') == '{"a": 1}'

    def test_balanced_block_ignores_braces_in_strings(self):
        text = 'prefix {"a": "x } y", "b": {"c": 1}} suffix'
        assert find_balanced_block(text) == '{"a": "x } y", "b": {"c": 1}}'

    def test_balanced_block_truncated(self):
        with pytest.raises(ValueError):
            find_balanced_block('{"a": {"b": 1}')

    def test_escape_inner_quotes_in_values_only(self):
        broken = '{"explanation": "He said "stop" now", "risk_score": 5}'
        fixed = escape_inner_quotes(broken)
        assert json.loads(fixed) == {"explanation": 'He said "stop" now', "risk_score": 5}

    def test_escape_inner_quotes_in_arrays(self):
        broken = '{"violations": ["the "bad" word", "other"]}'
        assert json.loads(escape_inner_quotes(broken)) == {"violations": ['the "bad" word', "other"]}

    def test_escape_inner_quotes_leaves_valid_json_alone(self):
        valid = '{"a": "b", "c": ["d", "e"], "f": {"g": "h"}}'
        assert escape_inner_quotes(valid) == valid


class TestRepairCascade:
    def test_direct(self, extractor):
        result = extractor.extract('{"risk_score": 40, "severity": "MEDIUM"}', CategoryResult)
        assert result.strategy == "direct"
        assert result.data.risk_score == 40
        assert result.data.severity == RiskLevel.MEDIUM

    def test_markdown_wrapped(self, extractor):
        text = 'Sure! Here you go:\n```json\n{"risk_score": 12, "confidence": 90}\n```\nLet me know.'
        result = extractor.extract(text, CategoryResult)
        assert result.strategy == "isolate"
        assert result.data.confidence == 90

    def test_trailing_commas(self, extractor):
        text = '{"risk_score": 40, "violations": ["a", "b",],}'
        result = extractor.extract(text, CategoryResult)
        assert result.strategy == "repair"
        assert result.data.violations == ["a", "b"]

    def test_truncated_response(self, extractor):
        text = '{"risk_score": 55, "severity": "HIGH", "explanation": "the response was cut'
        result = extractor.extract(text, CategoryResult)
        assert result.data.risk_score == 55
        assert result.data.severity == RiskLevel.HIGH

    def test_single_quoted_keys(self, extractor):
        result = extractor.extract("{'risk_score': 30, 'severity': 'LOW'}", CategoryResult)
        assert result.data.risk_score == 30

    def test_unescaped_quotes_produce_valid_object(self, extractor):
        text = '{"explanation": "He said "stop" now", "risk_score": 5}'
        result = extractor.extract(text, CategoryResult)
        assert isinstance(result.data, CategoryResult)

    def test_escape_quotes_strategy(self):
        text = 'Result: {"explanation": "He said "stop" now", "risk_score": 5}'
        assert EscapeInnerQuotes().attempt(text)["risk_score"] == 5

    def test_field_extraction_without_braces(self, extractor):
        text = 'The "risk_score": 72 and "severity": "high", "explanation": "graphic scene"'
        result = extractor.extract(text, CategoryResult)
        assert result.strategy == "fields"
        assert result.data.risk_score == 72
        assert result.data.severity == RiskLevel.HIGH
        assert result.data.explanation == "graphic scene"

    def test_values_clamped_and_coerced(self, extractor):
        result = extractor.extract(
            '{"risk_score": 150, "confidence": "85%", "severity": "critical", "violations": "one"}',
            CategoryResult,
        )
        assert result.data.risk_score == 100
        assert result.data.confidence == 85
        assert result.data.severity == RiskLevel.HIGH
        assert result.data.violations == ["one"]

    def test_missing_fields_get_defaults(self, extractor):
        result = extractor.extract('{"content_type": "Gaming"}', ContextClassification)
        assert result.data.target_audience == "General Audience"
        assert result.data.monetization_impact == 50

    @pytest.mark.parametrize("text", ["{}", "```json\n{}\n```", "Here you go: {}"])
    def test_empty_object_is_all_defaults(self, extractor, text):
        result = extractor.extract(text, ContextClassification)
        assert result.data.content_type == "general"
        assert result.data.monetization_impact == 50

    def test_repair_to_empty_object_rejected(self):
        # Unparseable text that the repairer can only turn into {}
        with patch("output_extractor.repair_json", return_value={}):
            with pytest.raises(ValueError):
                StructuralRepair().attempt('{"content_type": "Gam')

    def test_total_failure_keeps_raw_text(self, extractor):
        with pytest.raises(JsonExtractionFailed) as exc_info:
            extractor.extract("I cannot help with that.", CategoryResult)
        assert exc_info.value.raw_text == "I cannot help with that."

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_response(self, extractor, text):
        with pytest.raises(JsonExtractionFailed):
            extractor.extract(text, CategoryResult)

    def test_scalar_json_is_not_an_object(self, extractor):
        with pytest.raises(JsonExtractionFailed):
            extractor.extract("42", CategoryResult)


class TestStageSchemas:
    def test_category_batch_bare_mapping(self, extractor):
        text = '{"content_safety_violence": {"risk_score": 80}, "junk": 3}'
        batch = extractor.extract(text, CategoryBatch).data
        assert list(batch.categories) == ["CONTENT_SAFETY_VIOLENCE"]

    def test_category_blocks_from_broken_json(self):
        text = (
            '{"categories": {"CONTENT_SAFETY_VIOLENCE": {"risk_score": 85, "severity": "HIGH"} '
            '"ADVERTISER_FRIENDLY_PROFANITY": {"risk_score": 10 "severity": "LOW"}'
        )
        # Only the last-resort strategy, so the regex path is what gets exercised
        extractor = StructuredOutputExtractor(strategies=[])
        result = extractor.extract(text, CategoryBatch, field_extractor=extract_category_blocks)
        assert result.strategy == "fields"
        violence = result.data.categories["CONTENT_SAFETY_VIOLENCE"]
        assert violence.risk_score == 85
        assert "partially extracted" in violence.explanation
        assert result.data.categories["ADVERTISER_FRIENDLY_PROFANITY"].risk_score == 10

    def test_extract_fields_lists(self):
        fields = extract_fields('"risk_factors": ["a", "b"], "overall_risk_score": "60"', RiskAssessment)
        assert fields == {"risk_factors": ["a", "b"], "overall_risk_score": 60.0}

    def test_spans_located_and_validated(self, extractor):
        source = "This clip shows how to kill time and build a bomb."
        text = json.dumps({
            "overall_risk_score": 70,
            "risky_spans": [
                {"text": "build a bomb", "risk_level": "HIGH", "policy_category": "CONTENT_SAFETY_DANGEROUS_ACTS"},
                {"text": "kill", "start_index": 23, "end_index": 27, "risk_level": "LOW"},
                {"text": "reversed", "start_index": 10, "end_index": 5},
                {"text": "past the end", "start_index": 40, "end_index": 400},
                {"text": "not in the text"},
            ],
        })
        assessment = extractor.extract(text, RiskAssessment, context={"source_text": source}).data
        assert len(assessment.risky_spans) == 2
        bomb = assessment.risky_spans[0]
        assert source[bomb.start_index:bomb.end_index] == "build a bomb"
        assert assessment.risky_spans[1].start_index == 23

    def test_suggestions_list_or_dict(self, extractor):
        as_list = extractor.extract('[{"title": "A", "text": "Consider x"}, {}]', SuggestionBatch).data
        assert [s.title for s in as_list.suggestions] == ["A"]
        as_dict = extractor.extract('{"suggestions": [{"title": "B", "text": "y", "priority": "high"}]}', SuggestionBatch).data
        assert as_dict.suggestions[0].priority.value == "HIGH"

    def test_basic_analysis_defaults(self, extractor):
        basic = extractor.extract(
            '{"risk_score": "45", "risk_level": "moderate", "suggestions": [{"title": "T", "text": "x"}]}',
            BasicAnalysis,
        ).data
        assert basic.risk_score == 45
        assert basic.risk_level == RiskLevel.MEDIUM
        assert basic.suggestions[0].priority.value == "MEDIUM"
        assert basic.suggestions[0].impact_score == 50
