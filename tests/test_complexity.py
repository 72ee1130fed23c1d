"""
Unit tests for request complexity analysis.
"""

import pytest

from adaptive_forge.core.complexity import (
    Complexity,
    analyze_complexity,
    classify_complexity,
)

BASIC_ORG_CHART = "create a basic org chart"
MICROSERVICES_REQUEST = (
    "design a complete microservices architecture with databases, queues, "
    "and authentication, explain the reasoning and trade-offs"
)


class TestAnalyzeComplexity:
    """Test the factor scoring."""

    def test_short_general_request(self):
        """Short request scores length plus the generality bonus only."""
        analysis = analyze_complexity(BASIC_ORG_CHART)
        assert analysis.factors["length"] == pytest.approx(24 / 300)
        assert analysis.factors["analytical"] == 0.0
        assert analysis.factors["multi_step"] == 0.0
        assert analysis.factors["specificity"] == 0.1
        assert analysis.score == pytest.approx(0.18)
        assert analysis.simplicity_hits == 2

    def test_length_factor_is_capped(self):
        """Length contributes at most 0.3."""
        analysis = analyze_complexity("x" * 3000)
        assert analysis.factors["length"] == 0.3

    def test_analytical_factor_is_capped(self):
        """Analytical keywords contribute 0.2 each, at most 0.4."""
        analysis = analyze_complexity("analyze, compare, evaluate and assess")
        assert analysis.factors["analytical"] == 0.4

    def test_multi_step_factor_is_capped(self):
        """Multi-step keywords contribute 0.1 each, at most 0.2."""
        analysis = analyze_complexity("a detailed comprehensive workflow")
        assert analysis.factors["multi_step"] == pytest.approx(0.2)

    @pytest.mark.parametrize("text", [
        "chart of 3 regions",
        'diagram titled "Quarterly Plan"',
        "Tesla production overview",
    ])
    def test_specific_requests_get_no_generality_bonus(self, text):
        """A digit, quoted phrase or brand removes the specificity factor."""
        assert analyze_complexity(text).factors["specificity"] == 0.0

    def test_score_is_clipped_to_one(self):
        """The summed score never exceeds 1.0."""
        analysis = analyze_complexity(MICROSERVICES_REQUEST)
        assert analysis.score == 1.0
        assert analysis.keyword_hits == 7

    def test_more_keywords_never_lower_the_score(self):
        """Adding complexity keywords is monotonic."""
        base = "a diagram of the team"
        scores = [
            analyze_complexity(base).score,
            analyze_complexity(base + " compare").score,
            analyze_complexity(base + " compare workflow").score,
            analyze_complexity(base + " compare workflow evaluate architecture").score,
        ]
        assert scores == sorted(scores)

    def test_empty_text(self):
        """Empty text is analyzed without error."""
        analysis = analyze_complexity("")
        assert analysis.score == pytest.approx(0.1)
        assert analysis.length == 0


class TestClassifyComplexity:
    """Test bucketing into simple, medium and complex."""

    def test_basic_org_chart_is_simple(self):
        """Explicit simplicity keyword with a low score."""
        assert classify_complexity(BASIC_ORG_CHART) == Complexity.SIMPLE

    def test_microservices_request_is_complex(self):
        """High score driven by several complexity keywords."""
        assert classify_complexity(MICROSERVICES_REQUEST) == Complexity.COMPLEX

    def test_short_request_without_keywords_is_simple(self):
        """Under 50 characters counts as simple."""
        assert classify_complexity("draw the sales team") == Complexity.SIMPLE

    def test_ordinary_request_is_medium(self):
        """Neither short nor keyword-heavy."""
        text = "Create a diagram showing our team's onboarding steps for new hires"
        assert classify_complexity(text) == Complexity.MEDIUM

    def test_two_keyword_hits_make_a_short_request_complex(self):
        """Two analytical keywords push a 51-character request over the threshold."""
        text = "analyze and compare the regional sales of our teams"
        analysis = analyze_complexity(text)
        assert analysis.score > 0.6
        assert analysis.keyword_hits == 2
        assert classify_complexity(text) == Complexity.COMPLEX

    def test_single_keyword_hit_stays_medium(self):
        """One keyword is not enough for a request under 200 characters."""
        text = "analyze the regional sales figures of every one of our teams across the country"
        assert analyze_complexity(text).keyword_hits == 1
        assert classify_complexity(text) == Complexity.MEDIUM

    @pytest.mark.parametrize("text", ["", " ", "?", "x" * 10000, "😀 emoji only"])
    def test_classification_is_total(self, text):
        """Any input classifies without raising."""
        assert classify_complexity(text) in set(Complexity)

    def test_classification_is_deterministic(self):
        """Same input, same answer."""
        assert {classify_complexity(MICROSERVICES_REQUEST) for _ in range(5)} == {Complexity.COMPLEX}
