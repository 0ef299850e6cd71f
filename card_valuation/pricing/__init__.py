from card_valuation.pricing.base_adapter import BasePriceAdapter
from card_valuation.pricing.cache import PricingCache, cache_key
from card_valuation.pricing.orchestrator import PricingOrchestrator, aggregate_comps
from card_valuation.pricing.pokemontcg_adapter import PokemonTCGPriceAdapter
from card_valuation.pricing.pricecharting_adapter import PriceChartingAdapter
from card_valuation.pricing.summary import ValuationSummarizer

__all__ = [
    "BasePriceAdapter",
    "PricingCache",
    "cache_key",
    "PricingOrchestrator",
    "aggregate_comps",
    "PokemonTCGPriceAdapter",
    "PriceChartingAdapter",
    "ValuationSummarizer",
]
