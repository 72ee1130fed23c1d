"""
Tests for search-need analysis, query building and search augmentation.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from adaptive_forge.core.errors import ErrorKind, TransientServiceError
from adaptive_forge.core.guardrails import BudgetTracker, RateLimiter
from adaptive_forge.core.models import Citation, GenerationRequest, SearchContext
from adaptive_forge.core.search import (
    SearchAugmenter,
    SearchModel,
    SearchResponse,
    analyze_search_need,
    build_search_query,
    calculate_search_cost,
    estimate_search_cost,
    extract_temporal_context,
    select_search_model,
)

TODAY = datetime(2026, 10, 19, tzinfo=timezone.utc)
MARKET_CAP_REQUEST = "Create a bar chart showing the current market cap of top 5 tech companies"


class FakeSearchProvider:
    """Returns a canned response, or raises the given error."""

    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response or SearchResponse(
            answer="Apple, Microsoft and Nvidia lead.",
            citations=[Citation("https://example.com/markets/top-companies", "Top Companies")],
            model=SearchModel.SONAR,
            tokens_in=100,
            tokens_out=500,
        )
        self.error = error
        self.delay = delay
        self.queries = []
        self.models = []

    async def search(self, query, model=None):
        self.queries.append(query)
        self.models.append(model)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def make_augmenter(provider, **kwargs):
    limiter = RateLimiter(10, clock=lambda: 1000.0)
    budget = BudgetTracker(10.0, today=lambda: date(2026, 10, 19))
    augmenter = SearchAugmenter(provider, rate_limiter=limiter, budget_tracker=budget, **kwargs)
    return augmenter, limiter, budget


class TestAnalyzeSearchNeed:
    """Test the search trigger scoring."""

    def test_explicit_prefix(self):
        """An explicit prefix always triggers search."""
        analysis = analyze_search_need("search: tallest buildings")
        assert analysis.needs_search
        assert analysis.confidence == 1.0
        assert analysis.triggers[0] == "explicit:search:"
        assert analysis.search_query == "tallest buildings"

    def test_temporal_and_data_keywords(self):
        """Temporal plus data keywords reach the threshold."""
        analysis = analyze_search_need(MARKET_CAP_REQUEST)
        assert analysis.needs_search
        assert analysis.confidence == pytest.approx(0.7)
        assert "temporal:current" in analysis.triggers
        assert "data:market cap" in analysis.triggers
        assert "data:top 5" in analysis.triggers

    def test_question_with_context(self):
        """Question words about companies add confidence."""
        analysis = analyze_search_need("which companies make the best chips right now")
        assert analysis.needs_search
        assert "question+context" in analysis.triggers
        assert analysis.confidence == pytest.approx(0.9)

    def test_question_alone_is_not_enough(self):
        """A question about companies without data or time words stays below the threshold."""
        analysis = analyze_search_need("which companies lead cloud hosting")
        assert not analysis.needs_search
        assert analysis.confidence == pytest.approx(0.2)
        assert analysis.search_query == ""

    def test_no_triggers(self):
        """Ordinary diagram requests never search."""
        analysis = analyze_search_need("draw our org chart")
        assert not analysis.needs_search
        assert analysis.triggers == ()
        assert analysis.reasoning == "No strong search triggers detected (0% confidence)"

    def test_confidence_is_capped(self):
        """Confidence never exceeds 1.0."""
        assert analyze_search_need("research: latest statistics on which countries grow now").confidence == 1.0


class TestBuildSearchQuery:
    """Test query optimization."""

    def test_strips_diagram_instructions_and_stop_words(self):
        """Only the research subject remains, with the implied year."""
        query = build_search_query(MARKET_CAP_REQUEST, today=TODAY)
        assert query == "current market cap top 5 tech companies 2026"

    def test_explicit_year_not_duplicated(self):
        """A year already present is kept once."""
        query = build_search_query("find: revenue of the largest airlines 2024", today=TODAY)
        assert query == "revenue largest airlines 2024"

    def test_length_cap(self):
        """Queries are cut to 200 characters."""
        query = build_search_query("search: " + "semiconductor " * 40, today=TODAY)
        assert len(query) == 200
        assert query.endswith("...")


class TestExtractTemporalContext:
    """Test year extraction."""

    def test_explicit_year(self):
        """Explicit years win."""
        assert extract_temporal_context("sales in 2024", today=TODAY) == "2024"

    @pytest.mark.parametrize("text", ["latest figures", "this month's numbers", "as of today"])
    def test_relative_words_map_to_current_year(self, text):
        """Relative time words resolve to the current year."""
        assert extract_temporal_context(text, today=TODAY) == "2026"

    def test_no_temporal_context(self):
        """Timeless requests have no temporal context."""
        assert extract_temporal_context("org chart", today=TODAY) is None


class TestCalculateSearchCost:
    """Test search pricing."""

    def test_sonar(self):
        """Token cost plus the $0.005 request fee."""
        assert calculate_search_cost(SearchModel.SONAR, 100, 500) == pytest.approx(0.0056)

    def test_sonar_pro(self):
        """Pro tokens are pricier and the fee is $0.006."""
        assert calculate_search_cost(SearchModel.SONAR_PRO, 1000, 1000) == pytest.approx(0.024)

    def test_negative_tokens(self):
        """Negative counts raise."""
        with pytest.raises(ValueError):
            calculate_search_cost(SearchModel.SONAR, -1, 0)


class TestSelectSearchModel:
    """Test search model selection by query complexity."""

    def test_simple_query_uses_sonar(self):
        """Short factual queries get the cheapest model."""
        selection = select_search_model("current market cap top 5 tech companies 2026")
        assert selection.model == SearchModel.SONAR
        assert selection.reasoning.startswith("Simple query")
        assert selection.estimated_cost_usd == pytest.approx(0.005511)

    def test_reasoning_query_uses_sonar_reasoning(self):
        """Medium complexity plus a why/how question gets the reasoning model."""
        selection = select_search_model("explain why cloud costs keep rising for startups")
        assert selection.complexity_score == pytest.approx(0.46)
        assert selection.model == SearchModel.SONAR_REASONING
        assert selection.reasoning.startswith("Medium complexity with reasoning needs (46%)")

    def test_medium_query_without_reasoning_words_uses_sonar(self):
        """Medium complexity alone does not justify the reasoning model."""
        selection = select_search_model("contrast cloud vendor pricing for small teams")
        assert selection.complexity_score == pytest.approx(0.45)
        assert selection.model == SearchModel.SONAR

    def test_complex_query_uses_sonar_pro(self):
        """Highly analytical queries get the pro model."""
        selection = select_search_model(
            "compare and evaluate the pros and cons of distributed database architecture"
        )
        assert selection.complexity_score == pytest.approx(0.95)
        assert selection.model == SearchModel.SONAR_PRO
        assert selection.reasoning.startswith("High complexity query (95%)")

    def test_projected_cost_follows_model(self):
        """The projected cost is the chosen model's price for a typical answer."""
        query = "explain why cloud costs keep rising for startups"
        selection = select_search_model(query)
        assert selection.estimated_cost_usd == estimate_search_cost(SearchModel.SONAR_REASONING, query)
        assert estimate_search_cost(SearchModel.SONAR_PRO, query) > estimate_search_cost(SearchModel.SONAR, query)


class TestSearchAugmenter:
    """Test request augmentation."""

    @pytest.mark.asyncio
    async def test_attaches_search_context(self):
        """Requests needing search get the provider's answer and citations."""
        provider = FakeSearchProvider()
        augmenter, limiter, budget = make_augmenter(provider)

        request = await augmenter.augment(GenerationRequest(text=MARKET_CAP_REQUEST))

        assert request.search_context.answer == "Apple, Microsoft and Nvidia lead."
        assert request.search_context.citations[0].title == "Top Companies"
        assert request.text == MARKET_CAP_REQUEST
        assert provider.queries[0].startswith("current market cap top 5 tech companies")
        assert limiter.remaining() == 9
        assert budget.spent() == pytest.approx(0.0056)

    @pytest.mark.asyncio
    async def test_skips_requests_without_triggers(self):
        """No triggers, no search."""
        provider = FakeSearchProvider()
        augmenter, limiter, _ = make_augmenter(provider)
        original = GenerationRequest(text="draw our org chart")

        assert await augmenter.augment(original) is original
        assert provider.queries == []
        assert limiter.remaining() == 10

    @pytest.mark.asyncio
    async def test_force_searches_anyway(self):
        """force=True searches even without triggers."""
        provider = FakeSearchProvider()
        augmenter, _, _ = make_augmenter(provider)

        request = await augmenter.augment(GenerationRequest(text="draw our org chart"), force=True)

        assert provider.queries == ["draw our org chart"]
        assert request.search_context is not None

    @pytest.mark.asyncio
    async def test_existing_context_kept(self):
        """Requests that already carry research are left alone."""
        provider = FakeSearchProvider()
        augmenter, _, _ = make_augmenter(provider)
        original = GenerationRequest(text=MARKET_CAP_REQUEST, search_context=SearchContext(answer="cached"))

        assert await augmenter.augment(original) is original
        assert provider.queries == []

    @pytest.mark.asyncio
    async def test_provider_failure_degrades(self):
        """A failed search leaves the request without context but counts the request."""
        provider = FakeSearchProvider(error=TransientServiceError("down", ErrorKind.SERVICE_UNAVAILABLE, 503))
        augmenter, limiter, budget = make_augmenter(provider)
        original = GenerationRequest(text=MARKET_CAP_REQUEST)

        assert await augmenter.augment(original) is original
        assert limiter.remaining() == 9
        assert budget.spent() == 0.0

    @pytest.mark.asyncio
    async def test_timeout_degrades(self):
        """A slow search is abandoned."""
        provider = FakeSearchProvider(delay=5)
        augmenter, _, _ = make_augmenter(provider, timeout_seconds=0.01)
        original = GenerationRequest(text=MARKET_CAP_REQUEST)

        assert await augmenter.augment(original) is original

    @pytest.mark.asyncio
    async def test_budget_exhausted_skips_search(self):
        """No search when the projected cost does not fit the budget."""
        provider = FakeSearchProvider()
        augmenter, _, budget = make_augmenter(provider)
        budget.record_cost(9.999)
        original = GenerationRequest(text=MARKET_CAP_REQUEST)

        assert await augmenter.augment(original) is original
        assert provider.queries == []

    @pytest.mark.asyncio
    async def test_empty_answer_ignored(self):
        """A blank answer is not attached."""
        provider = FakeSearchProvider(response=SearchResponse(answer="  "))
        augmenter, _, budget = make_augmenter(provider)
        original = GenerationRequest(text=MARKET_CAP_REQUEST)

        assert await augmenter.augment(original) is original
        assert budget.spent() == pytest.approx(0.005)

    @pytest.mark.asyncio
    async def test_selected_model_reaches_provider(self):
        """The provider is asked with the model picked for the query."""
        provider = FakeSearchProvider()
        augmenter, _, _ = make_augmenter(provider)

        await augmenter.augment(GenerationRequest(text=MARKET_CAP_REQUEST))

        assert provider.models == [SearchModel.SONAR]

    @pytest.mark.asyncio
    async def test_fixed_model_overrides_selection(self):
        """A fixed model is used for every query."""
        provider = FakeSearchProvider()
        augmenter, _, _ = make_augmenter(provider, model=SearchModel.SONAR_PRO)

        await augmenter.augment(GenerationRequest(text=MARKET_CAP_REQUEST))

        assert provider.models == [SearchModel.SONAR_PRO]

    @pytest.mark.asyncio
    async def test_budget_check_uses_model_projection(self):
        """A budget that covers sonar but not sonar-pro blocks only the pro search."""
        cheap_provider = FakeSearchProvider()
        cheap, _, cheap_budget = make_augmenter(cheap_provider)
        cheap_budget.record_cost(9.99)
        pro_provider = FakeSearchProvider()
        pro, _, pro_budget = make_augmenter(pro_provider, model=SearchModel.SONAR_PRO)
        pro_budget.record_cost(9.99)

        await cheap.augment(GenerationRequest(text=MARKET_CAP_REQUEST))
        await pro.augment(GenerationRequest(text=MARKET_CAP_REQUEST))

        assert len(cheap_provider.queries) == 1
        assert pro_provider.queries == []
