"""
card_valuation/pricing/orchestrator.py: PriceQuery -> Valuation

Checks the per-source cache, queries the remaining sources concurrently and
aggregates every priceable comp into a single USD valuation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from card_valuation.config import FX_RATES_TO_USD
from card_valuation.errors import UpstreamError
from card_valuation.models import PriceQuery, RawComp, Valuation
from card_valuation.pricing.base_adapter import BasePriceAdapter
from card_valuation.pricing.cache import PricingCache

logger = logging.getLogger(__name__)

IQR_MIN_POINTS = 4
IQR_FENCE = 1.5
COUNT_SATURATION = 10
COUNT_WEIGHT = 0.7
DIVERSITY_WEIGHT = 0.3


def to_usd(comp: RawComp, fx_rates: Mapping[str, float] = FX_RATES_TO_USD) -> Optional[float]:
    """Price in USD, or None for non-positive prices and unknown currencies."""
    rate = fx_rates.get((comp.currency or "").upper())
    if rate is None or comp.price is None or comp.price <= 0:
        return None
    return comp.price * rate


def aggregate_comps(
    comps_by_source: Mapping[str, Sequence[RawComp]],
    total_sources: int,
    fx_rates: Mapping[str, float] = FX_RATES_TO_USD
) -> Valuation:
    """
    Combine comps from every source into one Valuation.

    Args:
        comps_by_source: source name -> comps returned (or cached) for it
        total_sources: Number of sources that were asked, for the diversity term
        fx_rates: Currency -> USD multiplier

    Returns:
        Valuation; zero-confidence when nothing is priceable
    """
    points = []
    for source, comps in comps_by_source.items():
        for comp in comps:
            usd = to_usd(comp, fx_rates)
            if usd is not None:
                points.append((source, usd))

    if not points:
        return Valuation()

    prices = np.array([p for _, p in points], dtype=np.float64)
    keep = np.ones(len(prices), dtype=bool)
    if len(prices) >= IQR_MIN_POINTS:
        q1, q3 = np.percentile(prices, [25, 75])
        iqr = q3 - q1
        keep = (prices >= q1 - IQR_FENCE * iqr) & (prices <= q3 + IQR_FENCE * iqr)
        dropped = int((~keep).sum())
        if dropped:
            logger.info(f"Dropped {dropped} outlier comp(s) outside [{q1 - IQR_FENCE * iqr:.2f}, {q3 + IQR_FENCE * iqr:.2f}]")

    kept_prices = prices[keep]
    sources = sorted({points[i][0] for i in range(len(points)) if keep[i]})
    count = int(len(kept_prices))

    confidence = (
        COUNT_WEIGHT * min(count / COUNT_SATURATION, 1.0)
        + DIVERSITY_WEIGHT * (len(sources) / max(total_sources, len(sources), 1))
    )
    return Valuation(
        value_low=round(float(kept_prices.min()), 2),
        value_median=round(float(np.median(kept_prices)), 2),
        value_high=round(float(kept_prices.max()), 2),
        comps_count=count,
        sources=sources,
        confidence=round(min(confidence, 1.0), 3),
    )


class PricingOrchestrator:
    """
    Usage:
        orchestrator = PricingOrchestrator(
            [PokemonTCGPriceAdapter(), PriceChartingAdapter()],
            cache=PricingCache(InMemoryKeyValueStore()),
        )
        valuation = orchestrator.get_valuation(PriceQuery(card_name="Charizard VMAX"))
    """

    def __init__(
        self,
        adapters: Sequence[BasePriceAdapter],
        cache: Optional[PricingCache] = None,
        fx_rates: Mapping[str, float] = FX_RATES_TO_USD
    ):
        self.adapters = list(adapters)
        self.cache = cache
        self.fx_rates = dict(fx_rates)

    def active_adapters(self) -> List[BasePriceAdapter]:
        return [a for a in self.adapters if a.is_available()]

    def _priceable(self, comps: Sequence[RawComp]) -> bool:
        return any(to_usd(c, self.fx_rates) is not None for c in comps)

    def fetch_all_comps(
        self, query: PriceQuery, force_refresh: bool = False
    ) -> Tuple[Dict[str, List[RawComp]], Dict[str, str]]:
        """
        Comps per source for a query, plus the sources that failed.

        A source is written to the cache only when its call succeeded and
        returned at least one priceable comp. Failed sources are logged and
        reported in the second mapping (source name -> error) instead of
        the first.

        Args:
            query: What to price
            force_refresh: Skip cache reads (successful fetches are still cached)
        """
        adapters = self.active_adapters()
        results: Dict[str, List[RawComp]] = {}
        failures: Dict[str, str] = {}
        pending: List[BasePriceAdapter] = []

        for adapter in adapters:
            cached = None
            if self.cache is not None and not force_refresh:
                cached = self.cache.get(adapter.name, query.card_name, query.set_name)
            if cached is not None:
                results[adapter.name] = cached
            else:
                pending.append(adapter)

        if not pending:
            return results, failures

        logger.info(f"Querying {len(pending)} price source(s) for '{query.card_name}' ({query.set_name or 'any set'})")
        with ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix="pricing") as pool:
            futures = {pool.submit(adapter.fetch_comps, query): adapter for adapter in pending}
            for future in as_completed(futures):
                adapter = futures[future]
                try:
                    comps = future.result()
                except Exception as e:
                    logger.warning(f"Price source {adapter.name} failed: {type(e).__name__}: {e}")
                    failures[adapter.name] = f"{type(e).__name__}: {e}"
                    continue

                results[adapter.name] = comps
                if self.cache is not None and comps and self._priceable(comps):
                    self.cache.put(adapter.name, query.card_name, query.set_name, comps)
                elif not comps:
                    logger.info(f"Price source {adapter.name} returned no comps")

        return results, failures

    def get_valuation(self, query: PriceQuery, force_refresh: bool = False) -> Valuation:
        """
        Aggregate valuation for a query.

        Sources that answered with no comps give a zero-confidence valuation.
        If every source that was asked raised instead, this is an upstream
        outage rather than an unpriced card, so UpstreamError is raised for
        the caller's retry policy to handle.
        """
        if not query.card_name or not query.card_name.strip():
            logger.warning("Cannot price a card without a name")
            return Valuation()

        comps_by_source, failures = self.fetch_all_comps(query, force_refresh=force_refresh)
        if failures and not comps_by_source:
            detail = "; ".join(f"{name}: {error}" for name, error in sorted(failures.items()))
            raise UpstreamError(f"All price sources failed: {detail}")

        valuation = aggregate_comps(comps_by_source, len(self.active_adapters()), self.fx_rates)
        logger.info(
            f"Valuation for '{query.card_name}': median=${valuation.value_median:.2f} "
            f"from {valuation.comps_count} comps ({', '.join(valuation.sources) or 'no sources'}), "
            f"confidence={valuation.confidence}"
        )
        return valuation
