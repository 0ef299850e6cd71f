"""
PriceCharting price adapter.

The /products search returns every product matching a free-text query with
prices in cents. Only products whose console name is a Pokemon card set are
kept. Disabled when PRICECHARTING_API_KEY is not set.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from card_valuation.config import (
    DEFAULT_CONDITION, PRICECHARTING_API_KEY, PRICECHARTING_API_URL, PRICECHARTING_REQUESTS_PER_MINUTE
)
from card_valuation.errors import TransientUpstreamError, UpstreamError
from card_valuation.models import PriceQuery, RawComp
from card_valuation.pricing.base_adapter import BasePriceAdapter
from card_valuation.utils.fuzzy_matching import normalize_for_comparison

logger = logging.getLogger(__name__)

# PriceCharting field -> variant label
UNGRADED_FIELDS = {"loose-price": "ungraded"}
GRADED_FIELDS = {"graded-price": "grade 9", "manual-only-price": "psa 10"}

_GRADED_CONDITION_HINTS = ("psa", "bgs", "cgc", "graded", "grade")


def _wants_graded(condition: Optional[str]) -> bool:
    lowered = (condition or "").lower()
    return any(hint in lowered for hint in _GRADED_CONDITION_HINTS)


class PriceChartingAdapter(BasePriceAdapter):
    """
    Usage:
        adapter = PriceChartingAdapter(api_key="...")
        comps = adapter.fetch_comps(PriceQuery(card_name="Charizard VMAX", number="018/195"))
    """

    name = "PriceCharting"

    def __init__(
        self,
        api_key: Optional[str] = PRICECHARTING_API_KEY,
        base_url: str = PRICECHARTING_API_URL,
        requests_per_minute: int = PRICECHARTING_REQUESTS_PER_MINUTE,
        session: Optional[requests.Session] = None,
        **kwargs
    ):
        super().__init__(requests_per_minute, **kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def build_search_text(query: PriceQuery) -> str:
        parts = [query.card_name]
        if query.number:
            parts.append(query.number.split("/")[0].strip())
        if query.set_name:
            parts.append(query.set_name)
        return " ".join(p for p in parts if p)

    def _search_products(self, text: str) -> List[Dict[str, Any]]:
        try:
            response = self.session.get(
                f"{self.base_url}/products",
                params={"t": self.api_key, "q": text},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransientUpstreamError(f"PriceCharting request timed out: {e}", source=self.name) from e
        except requests.RequestException as e:
            raise TransientUpstreamError(f"PriceCharting connection failed: {e}", source=self.name) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(f"PriceCharting error: {response.status_code}", source=self.name)
        if not response.ok:
            raise UpstreamError(f"PriceCharting error: {response.status_code} {response.reason}", source=self.name)

        payload = response.json()
        if payload.get("status") == "error":
            raise UpstreamError(f"PriceCharting error: {payload.get('error-message')}", source=self.name)
        return payload.get("products") or []

    def _fetch_comps_internal(self, query: PriceQuery) -> List[RawComp]:
        if not self.is_available():
            logger.debug("PriceCharting disabled (no API key)")
            return []

        text = self.build_search_text(query)
        products = [p for p in self._search_products(text) if "pokemon" in (p.get("console-name") or "").lower()]
        wanted_name = normalize_for_comparison(query.card_name)
        products = [p for p in products if wanted_name in normalize_for_comparison(p.get("product-name") or "")]
        if not products:
            logger.info(f"No PriceCharting products for {text!r}")
            return []

        fields = dict(UNGRADED_FIELDS)
        if _wants_graded(query.condition):
            fields.update(GRADED_FIELDS)

        condition = query.condition or DEFAULT_CONDITION
        comps: List[RawComp] = []
        for product in products:
            for field_name, variant in fields.items():
                cents = product.get(field_name)
                if not cents:
                    continue
                comps.append(RawComp(
                    source=self.name,
                    price=round(int(cents) / 100.0, 2),
                    currency="USD",
                    condition=condition,
                    listing_url=f"https://www.pricecharting.com/offers?product={product.get('id')}",
                    variant=variant,
                ))
        logger.info(f"PriceCharting adapter fetched {len(comps)} comps from {len(products)} product(s)")
        return comps
