"""Tests for query keyword extraction and keyword scoring."""
import pytest

from vectrank.keywords import (
    QueryTerms, extract_keywords, group_triggered, keyword_score, normalize_text,
    parse_regex_keyword,
)


class TestExtractKeywords:
    def test_lowercase_no_punctuation(self):
        assert extract_keywords("The Castle of Ironhold, the castle!") == ["castle", "ironhold"]

    def test_stopwords_removed(self):
        assert extract_keywords("what is the way to the tower") == ["way", "tower"]

    def test_short_words_removed(self):
        assert extract_keywords("x marks a go") == ["marks", "go"]

    def test_order_preserved(self):
        assert extract_keywords("dragon lair dragon gold") == ["dragon", "lair", "gold"]

    def test_empty(self):
        assert extract_keywords("") == []
        assert extract_keywords("   ...   ") == []

    def test_normalize_text(self):
        assert normalize_text("  Iron-Gate,   OPEN! ") == "iron gate open"


class TestParseRegexKeyword:
    def test_literal(self):
        assert parse_regex_keyword("castle") is None

    def test_regex_with_flags(self):
        import re
        pattern, flags = parse_regex_keyword("/iron\\w+/i")
        assert pattern == "iron\\w+"
        assert flags & re.IGNORECASE


class TestKeywordScore:
    def test_no_match(self, make_chunk):
        chunk = make_chunk("a", keywords=["dragon"])
        result = keyword_score(chunk, QueryTerms.from_text("castle ironhold"))
        assert result.score == 0.0
        assert result.matched == ()

    def test_plain_match_ratio(self, make_chunk):
        chunk = make_chunk("a", keywords=["castle", "dragon"])
        result = keyword_score(chunk, QueryTerms.from_text("castle ironhold fortress"))
        assert result.score == pytest.approx(1 / 3)
        assert result.matched == ("castle",)
        assert result.boost == pytest.approx(1.0)

    def test_case_insensitive(self, make_chunk):
        chunk = make_chunk("a", keywords=["Castle"])
        assert keyword_score(chunk, QueryTerms.from_text("the CASTLE")).score == pytest.approx(1.0)

    def test_custom_weight_adds_bonus(self, make_chunk):
        chunk = make_chunk("a", keywords=["castle"], custom_weights={"castle": 2.5})
        result = keyword_score(chunk, QueryTerms.from_text("castle ironhold fortress"))
        assert result.score == pytest.approx(2.5 / 3)
        assert result.boost == pytest.approx(2.5)

    def test_score_capped_at_ceiling(self, make_chunk):
        chunk = make_chunk("a", keywords=["castle"], custom_weights={"castle": 10.0})
        result = keyword_score(chunk, QueryTerms.from_text("castle ironhold"), ceiling=1.0)
        assert result.score == 1.0

    def test_phrase_keyword(self, make_chunk):
        chunk = make_chunk("a", keywords=["iron gate"])
        result = keyword_score(chunk, QueryTerms.from_text("open the iron gate now"))
        assert result.score == pytest.approx(1 / 4)

    def test_phrase_must_be_contiguous(self, make_chunk):
        chunk = make_chunk("a", keywords=["iron gate"])
        assert keyword_score(chunk, QueryTerms.from_text("gate of iron")).score == 0.0

    def test_regex_keyword(self, make_chunk):
        chunk = make_chunk("a", keywords=["/iron\\w+/i"])
        result = keyword_score(chunk, QueryTerms.from_text("Ironhold stands"))
        assert result.score == pytest.approx(0.5)

    def test_invalid_regex_never_matches(self, make_chunk):
        chunk = make_chunk("a", keywords=["/([/", "castle"])
        result = keyword_score(chunk, QueryTerms.from_text("castle ([ walls"))
        assert result.invalid == ("/([/",)
        assert result.matched == ("castle",)

    def test_query_without_keywords(self, make_chunk):
        chunk = make_chunk("a", keywords=["castle"])
        assert keyword_score(chunk, QueryTerms.from_text("what is it")).score == 0.0


class TestGroupTriggered:
    def test_any_keyword(self):
        terms = QueryTerms.from_text("castle ironhold fortress")
        assert group_triggered(["ironhold", "moat"], terms)

    def test_not_triggered(self):
        assert not group_triggered(["moat"], QueryTerms.from_text("castle"))

    def test_invalid_regex_ignored(self):
        assert not group_triggered(["/([/"], QueryTerms.from_text("castle"))
