from card_valuation.catalog.pokemontcg import BaseCardCatalog, CatalogCard, PokemonTCGCatalog
from card_valuation.catalog.set_resolver import SetResolver, normalize_collector_number

__all__ = [
    "BaseCardCatalog",
    "CatalogCard",
    "PokemonTCGCatalog",
    "SetResolver",
    "normalize_collector_number",
]
