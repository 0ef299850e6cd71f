"""
PokemonTCG price adapter.

pokemontcg.io embeds TCGplayer (USD) and Cardmarket (EUR) price summaries in
each card record. Which TCGplayer finish to surface (holofoil, reverse,
1st edition, normal) is picked from the card's rarity text.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from card_valuation.catalog.pokemontcg import PokemonTCGCatalog, clean_query_term
from card_valuation.config import DEFAULT_CONDITION, POKEMONTCG_REQUESTS_PER_MINUTE
from card_valuation.models import PriceQuery, RawComp
from card_valuation.pricing.base_adapter import BasePriceAdapter
from card_valuation.utils.pokemon_knowledge import is_holo_rarity

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 10

TCGPLAYER_PRICE_FIELDS = ("low", "market", "high")
CARDMARKET_PRICE_FIELDS = ("trendPrice", "averageSellPrice")


def _parse_updated_at(value: Optional[str]) -> datetime:
    if value:
        for fmt in ("%Y/%m/%d", "%Y-%m-%d"):
            try:
                return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
    return datetime.now(timezone.utc)


def select_price_variant(prices: Optional[Dict[str, Any]], rarity: Optional[str]) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    Pick the TCGplayer finish matching a rarity.

    Returns:
        (variant_key, price_point) or None if no suitable finish is listed
    """
    if not prices:
        return None

    rarity_lower = (rarity or "").lower()
    if "reverse" in rarity_lower:
        order = ("reverseHolofoil", "normal")
    elif "1st edition" in rarity_lower:
        if is_holo_rarity(rarity):
            order = ("1stEditionHolofoil", "holofoil")
        else:
            order = ("1stEditionNormal", "normal")
    elif is_holo_rarity(rarity):
        order = ("holofoil", "reverseHolofoil", "unlimitedHolofoil", "1stEditionHolofoil")
    else:
        order = ("normal", "holofoil")

    for key in order:
        if prices.get(key):
            return key, prices[key]
    return None


class PokemonTCGPriceAdapter(BasePriceAdapter):
    """
    Usage:
        adapter = PokemonTCGPriceAdapter()
        comps = adapter.fetch_comps(PriceQuery(card_name="Charizard VMAX", set_name="Brilliant Stars"))
    """

    name = "PokemonTCG"

    def __init__(
        self,
        catalog: Optional[PokemonTCGCatalog] = None,
        requests_per_minute: int = POKEMONTCG_REQUESTS_PER_MINUTE,
        **kwargs
    ):
        super().__init__(requests_per_minute, **kwargs)
        self.catalog = catalog or PokemonTCGCatalog(timeout=self.timeout)

    @staticmethod
    def build_search_query(query: PriceQuery) -> str:
        """Wildcard name and set terms tolerate OCR variations; the number must match exactly."""
        conditions = []
        name = clean_query_term(query.card_name)
        if name:
            conditions.append(f'name:"*{name}*"')
        if query.set_name:
            set_name = clean_query_term(query.set_name)
            if set_name:
                conditions.append(f'set.name:"*{set_name}*"')
        if query.number:
            number = query.number.split("/")[0].strip().lstrip("0") or "0"
            conditions.append(f"number:{number}")
        return " ".join(conditions)

    def _search_cards(self, query: PriceQuery) -> List[Dict[str, Any]]:
        search = self.build_search_query(query)
        if not search:
            return []
        cards = self.catalog.search(search, page_size=SEARCH_PAGE_SIZE)
        logger.info(f"PokemonTCG search {search!r} -> {len(cards)} card(s)")

        simple = f'name:"{clean_query_term(query.card_name)}"'
        if not cards and search != simple:
            logger.warning(f"No matches for {search!r}, retrying with name only")
            cards = self.catalog.search(simple, page_size=SEARCH_PAGE_SIZE)
            logger.info(f"Simplified search found {len(cards)} card(s)")
        return cards

    def _fetch_comps_internal(self, query: PriceQuery) -> List[RawComp]:
        cards = self._search_cards(query)
        if not cards:
            return []

        comps: List[RawComp] = []
        for card in cards:
            comps.extend(self.extract_comps(card, query))
        logger.info(f"PokemonTCG adapter fetched {len(comps)} comps from {len(cards)} card(s)")
        return comps

    def extract_comps(self, card: Dict[str, Any], query: PriceQuery) -> List[RawComp]:
        condition = query.condition or DEFAULT_CONDITION
        comps: List[RawComp] = []

        tcgplayer = card.get("tcgplayer") or {}
        selected = select_price_variant(tcgplayer.get("prices"), card.get("rarity"))
        if selected:
            variant, point = selected
            sold = _parse_updated_at(tcgplayer.get("updatedAt"))
            for field_name in TCGPLAYER_PRICE_FIELDS:
                price = point.get(field_name)
                if price:
                    comps.append(RawComp(
                        source=self.name,
                        price=float(price),
                        currency="USD",
                        sold_date=sold,
                        condition=condition,
                        listing_url=tcgplayer.get("url"),
                        variant=variant,
                    ))

        cardmarket = card.get("cardmarket") or {}
        cm_prices = cardmarket.get("prices") or {}
        if cm_prices:
            sold = _parse_updated_at(cardmarket.get("updatedAt"))
            for field_name in CARDMARKET_PRICE_FIELDS:
                price = cm_prices.get(field_name)
                if price:
                    comps.append(RawComp(
                        source=self.name,
                        price=float(price),
                        currency="EUR",
                        sold_date=sold,
                        condition=condition,
                        listing_url=cardmarket.get("url"),
                        variant="cardmarket",
                    ))
        return comps
