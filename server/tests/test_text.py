"""Tests for keyword matching with word-boundary and inflection handling.

Verifies that "plane" doesn't match "plan", that common inflections such as
"flights" or "booking" do match, and that normalization strips punctuation.
"""
import pytest

from core.text import keyword_matches, mentions_any, normalize_text


# ---------------------------------------------------------------------------
# normalize_text
# ---------------------------------------------------------------------------

class TestNormalizeText:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_text("Fly to TOKYO, please!") == "fly to tokyo please"

    def test_collapses_whitespace(self):
        assert normalize_text("  book \n\t a   hotel ") == "book a hotel"

    def test_empty(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""


# ---------------------------------------------------------------------------
# keyword_matches
# ---------------------------------------------------------------------------

class TestKeywordMatches:
    @pytest.mark.parametrize("text", [
        "i need a flight",
        "any flights tomorrow",
        "booking a room",
        "trip planning for june",
    ])
    def test_inflections_match(self, text):
        assert keyword_matches(text, ["flight", "book", "plan"])

    def test_plane_does_not_match_plan(self):
        assert keyword_matches("the plane was late", ["plan"]) == []

    def test_no_match_inside_longer_word(self):
        assert keyword_matches("the innkeeper", ["inn"]) == []

    def test_each_keyword_reported_once(self):
        assert keyword_matches("fly fly fly", ["fly", "plane"]) == ["fly"]

    def test_multi_word_keyword(self):
        assert keyword_matches("i need it right now", ["right now"]) == ["right now"]

    def test_blank_keywords_ignored(self):
        assert keyword_matches("anything", ["", "  "]) == []


class TestMentionsAny:
    def test_normalizes_before_matching(self):
        assert mentions_any("Passport STOLEN!", ["stolen"])

    def test_false_when_absent(self):
        assert not mentions_any("all good", ["stolen", "lost"])
