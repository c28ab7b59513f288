"""Tests for finding similarity used in deduplication."""

from prtrail_store.similarity import is_similar_finding, normalize, overlap_ratio, significant_words


def _words(prefix: str, count: int, start: int = 0) -> str:
    return " ".join(f"{prefix}{i:03d}" for i in range(start, start + count))


class TestNormalize:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize("Missing NULL-check!  (user.id)") == "missing null check user id"

    def test_collapses_whitespace(self):
        assert normalize("  a \n\t b  ") == "a b"


class TestSignificantWords:
    def test_drops_short_and_stop_words(self):
        assert significant_words("The id is not checked before the query") == {"checked", "query"}

    def test_empty_text(self):
        assert significant_words("") == set()


class TestIsSimilarFinding:
    def test_exact_match_after_normalization(self):
        assert is_similar_finding("Missing null check!", "missing NULL check")

    def test_overlap_exactly_half_is_similar(self):
        a = "alpha bravo charlie delta"
        b = "alpha bravo xray yankee"
        assert overlap_ratio(a, b) == 0.5
        assert is_similar_finding(a, b)

    def test_overlap_just_below_half_is_not_similar(self):
        # 49 shared words out of 100 on each side
        a = _words("shared", 49) + " " + _words("left", 51)
        b = _words("shared", 49) + " " + _words("right", 51)
        assert overlap_ratio(a, b) == 0.49
        assert not is_similar_finding(a, b)

    def test_ratio_uses_smaller_set(self):
        # Every word of the short finding appears in the long one.
        assert is_similar_finding("unvalidated redirect", "unvalidated redirect target allows phishing attacks")

    def test_only_stop_words_is_not_similar(self):
        assert not is_similar_finding("it is", "this was")

    def test_distinct_findings(self):
        assert not is_similar_finding("Race condition in cache refresh", "Hardcoded API key in settings")
