import pytest

from config import AnalysisConfig
from context_prep import decode_entities, detect_language, prepare_context
from errors import EmptyInputError, InvalidInputError
from false_positives import filter_false_positives, is_false_positive


class TestPrepareContext:
    def test_blank_input_rejected(self):
        with pytest.raises(EmptyInputError):
            prepare_context("   \n\t ")

    def test_none_rejected(self):
        with pytest.raises(EmptyInputError):
            prepare_context(None)

    def test_empty_is_also_invalid_input(self):
        # Callers that only catch InvalidInputError still see blank input
        with pytest.raises(InvalidInputError):
            prepare_context("")

    def test_too_short(self):
        with pytest.raises(InvalidInputError, match="too short"):
            prepare_context("hi there")

    def test_too_long(self):
        config = AnalysisConfig(max_text_length=50)
        with pytest.raises(InvalidInputError, match="too long"):
            prepare_context("x" * 51, config)

    def test_short_text_no_chunking(self):
        context = prepare_context("A perfectly ordinary sentence.")
        assert not context.needs_chunking
        assert context.detected_language == "English"
        assert not context.is_non_english
        assert context.chunk_size == 3500
        assert context.overlap == 250

    def test_long_text_needs_chunking(self):
        config = AnalysisConfig(chunk_size=100, chunk_overlap=10)
        context = prepare_context("word " * 50, config)
        assert context.needs_chunking
        assert context.content_length == 250

    def test_non_english_is_a_warning_not_an_error(self, caplog):
        context = prepare_context("これは日本語のテキストです。よろしく")
        assert context.is_non_english
        assert context.detected_language == "Japanese"
        assert "Japanese" in caplog.text

    def test_entities_decoded_twice(self):
        context = prepare_context("Don&amp;#39;t do this at home &amp;amp; stay safe")
        assert context.decoded_text == "Don't do this at home & stay safe"
        assert context.text.startswith("Don&amp;")


class TestLanguageDetection:
    @pytest.mark.parametrize("text, language", [
        ("Hello world", "English"),
        ("مرحبا بالعالم", "Arabic"),
        ("你好世界", "Chinese"),
        ("ひらがな", "Japanese"),
        ("안녕하세요", "Korean"),
        ("สวัสดี", "Thai"),
        ("नमस्ते", "Hindi"),
    ])
    def test_scripts(self, text, language):
        assert detect_language(text) == language

    def test_decode_entities_single(self):
        assert decode_entities("a &lt; b") == "a < b"


class TestFalsePositives:
    @pytest.mark.parametrize("phrase", [
        "kid", "my phone", "the family", "ok", "", "   ", "...", "the kitchen at home",
    ])
    def test_harmless(self, phrase):
        assert is_false_positive(phrase)

    @pytest.mark.parametrize("phrase", [
        "kill", "kill the kid", "bomb threat", "buy drugs online",
    ])
    def test_risky_phrases_kept(self, phrase):
        assert not is_false_positive(phrase)

    @pytest.mark.parametrize("phrase", ["убить", "杀了他", "杀人", "اقتله"])
    def test_non_latin_phrases_kept(self, phrase):
        assert not is_false_positive(phrase)

    def test_non_latin_filter(self):
        assert filter_false_positives(["杀了他", "убить", "phone"]) == ["杀了他", "убить"]

    def test_whole_word_matching(self):
        # "kid" is allow-listed but "kidnap" is not
        assert not is_false_positive("kidnap")
        assert is_false_positive("kid")

    def test_filter_keeps_order(self):
        phrases = ["kill", "phone", "shoot them", "mom", "scam link"]
        assert filter_false_positives(phrases) == ["kill", "shoot them", "scam link"]
