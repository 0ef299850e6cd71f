"""
card_valuation/tests/test_pricing.py: Unit tests for pricing

Tests:
- Aggregation: FX conversion, outlier trimming, confidence
- Orchestrator cache behaviour (idempotent, never caches failures or empties)
- Per-adapter rate limiting
- PokemonTCG and PriceCharting adapters against fake upstreams
- LLM valuation summary and its median fallback
"""

import json
from datetime import datetime, timezone

import pytest

from card_valuation.errors import RateLimitExceededError, ResponseValidationError, UpstreamError
from card_valuation.models import PriceQuery, RawComp, Trend, Valuation
from card_valuation.pricing import (
    PokemonTCGPriceAdapter, PriceChartingAdapter, PricingCache, PricingOrchestrator, aggregate_comps, cache_key
)
from card_valuation.pricing.orchestrator import to_usd
from card_valuation.pricing.pokemontcg_adapter import select_price_variant
from card_valuation.pricing.summary import ValuationSummarizer, parse_summary
from card_valuation.storage.kv_store import BaseKeyValueStore, InMemoryKeyValueStore
from card_valuation.utils.rate_limit import TokenBucket
from card_valuation.tests.conftest import FakeAdapter, FakeLLM, FakeResponse, FakeSession


def comp(price, currency="USD", source="PokemonTCG"):
    return RawComp(source=source, price=price, currency=currency)


QUERY = PriceQuery(card_name="Charizard VMAX", set_name="Silver Tempest", number="018/195")


class BrokenStore(BaseKeyValueStore):
    def get(self, key):
        raise ConnectionError("cache backend down")

    def put(self, key, value, ttl_seconds):
        raise ConnectionError("cache backend down")


class TestAggregation:
    """Test comp aggregation"""

    def test_no_comps(self):
        """Test that nothing priceable yields an empty valuation"""
        assert aggregate_comps({}, total_sources=2) == Valuation()
        assert aggregate_comps({"PokemonTCG": []}, total_sources=1).confidence == 0.0

    def test_fx_conversion(self):
        """Test that EUR comps are converted before aggregation"""
        valuation = aggregate_comps({"PokemonTCG": [comp(20.0), comp(10.0, "EUR")]}, total_sources=1)

        assert valuation.value_low == 10.8
        assert valuation.value_median == 15.4
        assert valuation.value_high == 20.0
        assert valuation.currency == "USD"

    def test_unpriceable_comps_dropped(self):
        """Test that zero prices and unknown currencies are ignored"""
        valuation = aggregate_comps(
            {"PokemonTCG": [comp(20.0), comp(0.0), comp(500.0, "JPY")]}, total_sources=1
        )
        assert valuation.comps_count == 1
        assert valuation.value_median == 20.0
        assert to_usd(comp(500.0, "JPY")) is None

    def test_outliers_trimmed(self):
        """Test the 1.5 IQR fence once there are four or more points"""
        prices = [20.0, 21.0, 22.0, 23.0, 200.0]
        valuation = aggregate_comps({"PokemonTCG": [comp(p) for p in prices]}, total_sources=1)

        assert valuation.comps_count == 4
        assert valuation.value_high == 23.0
        assert valuation.value_median == 21.5

    def test_no_trimming_below_four_points(self):
        """Test that three points are kept even if spread out"""
        valuation = aggregate_comps({"PokemonTCG": [comp(p) for p in (1.0, 2.0, 300.0)]}, total_sources=1)
        assert valuation.comps_count == 3

    def test_confidence(self):
        """Test count and source-diversity terms"""
        two = aggregate_comps({"PokemonTCG": [comp(20.0), comp(21.0)]}, total_sources=2)
        assert two.confidence == pytest.approx(0.7 * 0.2 + 0.3 * 0.5)

        many = aggregate_comps(
            {"PokemonTCG": [comp(20.0 + i) for i in range(6)],
             "PriceCharting": [comp(20.0 + i, source="PriceCharting") for i in range(6)]},
            total_sources=2,
        )
        assert many.confidence == 1.0
        assert many.sources == ["PokemonTCG", "PriceCharting"]


class TestOrchestrator:
    """Test source fan-out and caching"""

    def make(self, *adapters, store=None, ttl=3600):
        cache = PricingCache(store if store is not None else InMemoryKeyValueStore(), ttl_seconds=ttl)
        return PricingOrchestrator(list(adapters), cache=cache)

    def test_combines_sources(self, usd_comps):
        """Test that every available source contributes"""
        other = FakeAdapter("PriceCharting", [comp(19.0, source="PriceCharting")])
        valuation = self.make(FakeAdapter("PokemonTCG", usd_comps), other).get_valuation(QUERY)

        assert valuation.comps_count == 4
        assert valuation.sources == ["PokemonTCG", "PriceCharting"]

    def test_cache_is_idempotent(self, usd_comps):
        """Test that a repeated query is served from cache with the same result"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        orchestrator = self.make(adapter)

        first = orchestrator.get_valuation(QUERY)
        second = orchestrator.get_valuation(QUERY)

        assert adapter.calls == 1
        assert first == second

    def test_cache_key_normalized(self, usd_comps):
        """Test that case and padding do not defeat the cache"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        orchestrator = self.make(adapter)

        orchestrator.get_valuation(QUERY)
        orchestrator.get_valuation(PriceQuery(card_name="  charizard vmax ", set_name="SILVER TEMPEST"))

        assert adapter.calls == 1
        assert cache_key("Charizard VMAX", None) == "charizard vmax|unknown"

    def test_empty_results_not_cached(self):
        """Test that 'no comps' is re-fetched next time"""
        adapter = FakeAdapter("PokemonTCG", [])
        orchestrator = self.make(adapter)

        orchestrator.get_valuation(QUERY)
        orchestrator.get_valuation(QUERY)
        assert adapter.calls == 2

    def test_failures_not_cached(self, usd_comps):
        """Test that a failing source is left out and retried next time"""
        failing = FakeAdapter("PriceCharting", error=UpstreamError("PriceCharting error: 503"))
        orchestrator = self.make(FakeAdapter("PokemonTCG", usd_comps), failing)

        valuation = orchestrator.get_valuation(QUERY)
        orchestrator.get_valuation(QUERY)

        assert valuation.sources == ["PokemonTCG"]
        assert valuation.comps_count == 3
        assert failing.calls == 2

    def test_all_sources_failing_raises(self):
        """Test that an outage of every queried source is an error, not an unpriced card"""
        first = FakeAdapter("PokemonTCG", error=UpstreamError("PokemonTCG error: 503"))
        second = FakeAdapter("PriceCharting", error=UpstreamError("PriceCharting error: 502"))

        with pytest.raises(UpstreamError, match="All price sources failed"):
            self.make(first, second).get_valuation(QUERY)
        assert first.calls == 1
        assert second.calls == 1

    def test_failures_reported_per_source(self, usd_comps):
        """Test that fetch_all_comps names the sources that raised"""
        failing = FakeAdapter("PriceCharting", error=UpstreamError("PriceCharting error: 503"))
        comps, failures = self.make(FakeAdapter("PokemonTCG", usd_comps), failing).fetch_all_comps(QUERY)

        assert list(comps) == ["PokemonTCG"]
        assert list(failures) == ["PriceCharting"]
        assert "503" in failures["PriceCharting"]

    def test_empty_sources_are_not_failures(self):
        """Test that sources answering with nothing still give a zero-confidence valuation"""
        valuation = self.make(FakeAdapter("PokemonTCG", []), FakeAdapter("PriceCharting", [])).get_valuation(QUERY)

        assert valuation.comps_count == 0
        assert valuation.confidence == 0.0

    def test_cached_source_covers_failed_one(self, usd_comps):
        """Test that a cache hit keeps a valuation alive when the live sources fail"""
        store = InMemoryKeyValueStore()
        self.make(FakeAdapter("PokemonTCG", usd_comps), store=store).get_valuation(QUERY)

        failing = FakeAdapter("PriceCharting", error=UpstreamError("PriceCharting error: 503"))
        valuation = self.make(FakeAdapter("PokemonTCG", usd_comps), failing, store=store).get_valuation(QUERY)
        assert valuation.sources == ["PokemonTCG"]

    def test_empty_store_is_used(self, usd_comps):
        """Test that a freshly created, empty store passed in is the one written to"""
        store = InMemoryKeyValueStore()
        self.make(FakeAdapter("PokemonTCG", usd_comps), store=store).get_valuation(QUERY)

        assert store
        assert len(store) == 1

    def test_unpriceable_results_not_cached(self):
        """Test that comps with no usable price are not cached"""
        adapter = FakeAdapter("PokemonTCG", [comp(0.0)])
        orchestrator = self.make(adapter)

        orchestrator.get_valuation(QUERY)
        orchestrator.get_valuation(QUERY)
        assert adapter.calls == 2

    def test_force_refresh_bypasses_cache(self, usd_comps):
        """Test that force_refresh skips cache reads"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        orchestrator = self.make(adapter)

        orchestrator.get_valuation(QUERY)
        orchestrator.get_valuation(QUERY, force_refresh=True)
        assert adapter.calls == 2

    def test_cache_expiry(self, usd_comps, fake_clock):
        """Test that entries older than the TTL are re-fetched"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        orchestrator = self.make(adapter, store=InMemoryKeyValueStore(clock=fake_clock), ttl=60)

        orchestrator.get_valuation(QUERY)
        fake_clock.advance(61)
        orchestrator.get_valuation(QUERY)
        assert adapter.calls == 2

    def test_broken_cache_degrades_to_miss(self, usd_comps):
        """Test that cache errors never fail pricing"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        valuation = self.make(adapter, store=BrokenStore()).get_valuation(QUERY)

        assert valuation.comps_count == 3
        assert PricingCache(BrokenStore()).put("PokemonTCG", "x", None, usd_comps) is False

    def test_unavailable_adapter_skipped(self, usd_comps):
        """Test that unconfigured sources are not asked and do not dilute confidence"""
        disabled = FakeAdapter("PriceCharting", usd_comps, available=False)
        orchestrator = self.make(FakeAdapter("PokemonTCG", usd_comps), disabled)

        valuation = orchestrator.get_valuation(QUERY)
        assert disabled.calls == 0
        assert valuation.confidence == pytest.approx(0.7 * 0.3 + 0.3)

    def test_no_name(self, usd_comps):
        """Test that a nameless query is not priced"""
        adapter = FakeAdapter("PokemonTCG", usd_comps)
        assert self.make(adapter).get_valuation(PriceQuery(card_name=" ")) == Valuation()
        assert adapter.calls == 0


class TestRateLimiting:
    """Test per-adapter token buckets"""

    def test_exhausted_bucket_raises(self, usd_comps, fake_clock):
        """Test that a wait longer than the adapter timeout fails fast"""
        bucket = TokenBucket(6, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        adapter = FakeAdapter("PokemonTCG", usd_comps, bucket=bucket)

        assert len(adapter.fetch_comps(QUERY)) == 3
        with pytest.raises(RateLimitExceededError):
            adapter.fetch_comps(QUERY)
        assert adapter.calls == 1

    def test_adapters_do_not_share_buckets(self, usd_comps):
        """Test that each adapter owns its own limiter"""
        first = FakeAdapter("PokemonTCG", usd_comps)
        second = FakeAdapter("PriceCharting", usd_comps)
        assert first.bucket is not second.bucket

    def test_rate_limited_source_left_out(self, usd_comps, fake_clock):
        """Test that a throttled source does not fail the valuation"""
        bucket = TokenBucket(6, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        bucket.try_acquire()
        throttled = FakeAdapter("PriceCharting", usd_comps, bucket=bucket)
        orchestrator = PricingOrchestrator([FakeAdapter("PokemonTCG", usd_comps), throttled])

        valuation = orchestrator.get_valuation(QUERY)
        assert valuation.sources == ["PokemonTCG"]


class TestValuationSummarizer:
    """Test the LLM valuation summary and its median fallback"""

    VALUATION = Valuation(value_low=18.0, value_median=20.0, value_high=22.0, comps_count=3,
                          sources=["PokemonTCG"], confidence=0.51)

    def reply(self, **overrides):
        payload = {"summary": "Prices are steady.", "fair_value": 20.5, "trend": "stable",
                   "recommendation": "Hold.", "confidence": 0.8}
        payload.update(overrides)
        return json.dumps(payload)

    def test_llm_summary(self, fake_clock):
        """Test a valid reply, with confidence capped at the valuation's"""
        llm = FakeLLM(self.reply(trend="Falling"))
        summary = ValuationSummarizer(llm, sleep=fake_clock.sleep).summarize(QUERY, self.VALUATION)

        assert summary.fair_value == 20.5
        assert summary.trend == Trend.FALLING
        assert summary.confidence == 0.51
        assert summary.verified_by_ai
        assert "- median: 20.00" in llm.calls[0]["user"]
        assert fake_clock.sleeps == []

    def test_fair_value_clamped_to_observed_range(self, fake_clock):
        """Test that a fair value outside low/high is pulled back into it"""
        llm = FakeLLM("```json\n" + self.reply(fair_value=95.0) + "\n```")
        summary = ValuationSummarizer(llm, sleep=fake_clock.sleep).summarize(QUERY, self.VALUATION)
        assert summary.fair_value == 22.0

    def test_bad_reply_retried(self, fake_clock):
        """Test that an unparseable reply costs one attempt"""
        llm = FakeLLM("I think it is worth about twenty dollars", self.reply())
        summary = ValuationSummarizer(llm, sleep=fake_clock.sleep).summarize(QUERY, self.VALUATION)

        assert summary.verified_by_ai
        assert len(llm.calls) == 2
        assert fake_clock.sleeps == [1.0]

    def test_fallback_after_exhaustion(self, fake_clock):
        """Test the median fallback once every attempt is spent"""
        llm = FakeLLM(self.reply(trend="sideways"))
        summary = ValuationSummarizer(llm, sleep=fake_clock.sleep).summarize(QUERY, self.VALUATION)

        assert len(llm.calls) == 3
        assert summary.fair_value == 20.0
        assert summary.trend == Trend.STABLE
        assert summary.confidence == 0.51
        assert not summary.verified_by_ai
        assert "3 attempt(s)" in summary.summary

    def test_no_comps_skips_llm(self):
        """Test that an empty valuation is summarized without an LLM call"""
        llm = FakeLLM(self.reply())
        summary = ValuationSummarizer(llm).summarize(QUERY, Valuation())

        assert llm.calls == []
        assert summary.fair_value == 0.0
        assert summary.confidence == 0.0
        assert summary.trend == Trend.STABLE

    def test_parse_summary_rejects_non_object(self):
        """Test that a JSON array is a validation error"""
        with pytest.raises(ResponseValidationError):
            parse_summary("```json\n[1, 2]\n```", self.VALUATION)


class FakeTCGCatalog:
    """Stand-in for PokemonTCGCatalog.search"""

    def __init__(self, *results):
        self.results = list(results)
        self.queries = []

    def search(self, query, page_size=None):
        self.queries.append(query)
        return self.results.pop(0) if self.results else []


TCG_CARD = {
    "name": "Charizard VMAX",
    "number": "18",
    "rarity": "Rare Holo VMAX",
    "set": {"name": "Silver Tempest"},
    "tcgplayer": {
        "url": "https://prices.pokemontcg.io/tcgplayer/swsh12-18",
        "updatedAt": "2024/05/01",
        "prices": {"holofoil": {"low": 18.0, "market": 21.5, "high": 40.0},
                   "reverseHolofoil": {"market": 30.0}},
    },
    "cardmarket": {
        "url": "https://prices.pokemontcg.io/cardmarket/swsh12-18",
        "updatedAt": "2024/05/02",
        "prices": {"trendPrice": 20.0, "averageSellPrice": 19.0},
    },
}


class TestPokemonTCGAdapter:
    """Test the PokemonTCG price adapter"""

    @pytest.mark.parametrize("rarity,expected", [
        ("Rare Holo VMAX", "holofoil"),
        ("Reverse Holo", "reverseHolofoil"),
        ("Common", "normal"),
        ("1st Edition Rare", "1stEditionNormal"),
    ])
    def test_select_price_variant(self, rarity, expected):
        """Test finish selection from rarity text"""
        prices = {key: {"market": 1.0} for key in
                  ("normal", "holofoil", "reverseHolofoil", "1stEditionNormal")}
        assert select_price_variant(prices, rarity)[0] == expected

    def test_select_price_variant_falls_through(self):
        """Test the next finish in order when the preferred one is missing"""
        assert select_price_variant({"normal": {"market": 1.0}}, "Rare Holo") is None
        assert select_price_variant({"holofoil": {"market": 3.0}}, "1st Edition Holo Rare")[0] == "holofoil"
        assert select_price_variant({"reverseHolofoil": {"market": 2.0}}, "Rare Holo V")[0] == "reverseHolofoil"
        assert select_price_variant({}, "Common") is None

    def test_build_search_query(self):
        """Test wildcard name / set terms and exact numerator"""
        assert PokemonTCGPriceAdapter.build_search_query(QUERY) == (
            'name:"*Charizard VMAX*" set.name:"*Silver Tempest*" number:18'
        )

    def test_extract_comps(self):
        """Test TCGplayer (USD) and Cardmarket (EUR) comps"""
        adapter = PokemonTCGPriceAdapter(catalog=FakeTCGCatalog())
        comps = adapter.extract_comps(TCG_CARD, QUERY)

        usd = [c for c in comps if c.currency == "USD"]
        eur = [c for c in comps if c.currency == "EUR"]
        assert [c.price for c in usd] == [18.0, 21.5, 40.0]
        assert {c.variant for c in usd} == {"holofoil"}
        assert [c.price for c in eur] == [20.0, 19.0]
        assert usd[0].sold_date == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert all(c.condition == "Near Mint" for c in comps)

    def test_fetch_with_name_only_retry(self):
        """Test that an over-specific query is retried with the name only"""
        catalog = FakeTCGCatalog([], [TCG_CARD])
        adapter = PokemonTCGPriceAdapter(catalog=catalog)

        comps = adapter.fetch_comps(QUERY)

        assert len(catalog.queries) == 2
        assert catalog.queries[1] == 'name:"Charizard VMAX"'
        assert len(comps) == 5

    def test_no_cards(self):
        """Test that no match is an empty list, not an error"""
        assert PokemonTCGPriceAdapter(catalog=FakeTCGCatalog()).fetch_comps(QUERY) == []


PRODUCTS = {
    "status": "success",
    "products": [
        {"id": 101, "product-name": "Charizard VMAX #18", "console-name": "Pokemon Silver Tempest",
         "loose-price": 2150, "graded-price": 4500, "manual-only-price": 12000},
        {"id": 102, "product-name": "Charizard VMAX Figure", "console-name": "Toys",
         "loose-price": 999},
        {"id": 103, "product-name": "Pikachu #49", "console-name": "Pokemon Silver Tempest",
         "loose-price": 300},
    ],
}


class TestPriceChartingAdapter:
    """Test the PriceCharting adapter"""

    def test_disabled_without_key(self):
        """Test that the adapter reports unavailable without an API key"""
        adapter = PriceChartingAdapter(api_key=None, session=FakeSession())
        assert not adapter.is_available()
        assert adapter.fetch_comps(QUERY) == []

    def test_ungraded_comps(self):
        """Test product filtering and cents conversion"""
        session = FakeSession(FakeResponse(payload=PRODUCTS))
        adapter = PriceChartingAdapter(api_key="token", base_url="https://pc.example.test/api", session=session)

        comps = adapter.fetch_comps(QUERY)

        assert session.requests[0]["url"] == "https://pc.example.test/api/products"
        assert session.requests[0]["params"] == {"t": "token", "q": "Charizard VMAX 018 Silver Tempest"}
        assert [(c.price, c.variant) for c in comps] == [(21.5, "ungraded")]
        assert comps[0].listing_url.endswith("product=101")

    def test_graded_condition_adds_graded_prices(self):
        """Test that graded conditions include graded price fields"""
        session = FakeSession(FakeResponse(payload=PRODUCTS))
        adapter = PriceChartingAdapter(api_key="token", session=session)

        query = QUERY.model_copy(update={"condition": "PSA 10"})
        comps = adapter.fetch_comps(query)

        assert sorted(c.price for c in comps) == [21.5, 45.0, 120.0]
        assert all(c.condition == "PSA 10" for c in comps)

    def test_api_error_status(self):
        """Test that an error payload raises"""
        session = FakeSession(FakeResponse(payload={"status": "error", "error-message": "Invalid token"}))
        with pytest.raises(UpstreamError, match="Invalid token"):
            PriceChartingAdapter(api_key="bad", session=session).fetch_comps(QUERY)
