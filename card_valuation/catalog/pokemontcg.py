"""
Card catalog lookup against the Pokemon TCG API (https://pokemontcg.io/).

The same HTTP client backs set resolution (search by name) and the
PokemonTCG price adapter (free-form query with tcgplayer/cardmarket prices).
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from card_valuation.config import (
    CATALOG_PAGE_SIZE, CATALOG_TIMEOUT_SECONDS, POKEMONTCG_API_KEY, POKEMONTCG_API_URL
)
from card_valuation.errors import TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)

_UNSAFE_QUERY_CHARS = re.compile(r"[^\w\s-]")


def clean_query_term(text: str) -> str:
    """Strip characters the Lucene-style query syntax would choke on."""
    return _UNSAFE_QUERY_CHARS.sub("", text or "").strip()


@dataclass
class CatalogCard:
    """One printing of a card as returned by the catalog."""

    name: str
    number: str
    set_name: str
    set_series: Optional[str] = None
    set_id: Optional[str] = None
    printed_total: Optional[int] = None
    release_date: Optional[str] = None
    """YYYY/MM/DD as published by the API."""
    rarity: Optional[str] = None
    tcgplayer: Optional[Dict[str, Any]] = None
    cardmarket: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CatalogCard":
        card_set = data.get("set") or {}
        return cls(
            name=data.get("name", ""),
            number=str(data.get("number", "")),
            set_name=card_set.get("name", ""),
            set_series=card_set.get("series"),
            set_id=card_set.get("id"),
            printed_total=card_set.get("printedTotal"),
            release_date=card_set.get("releaseDate"),
            rarity=data.get("rarity"),
            tcgplayer=data.get("tcgplayer"),
            cardmarket=data.get("cardmarket"),
            raw=data,
        )


class BaseCardCatalog(ABC):
    """Abstract card catalog capability."""

    @abstractmethod
    def search_by_name(self, name: str) -> List[CatalogCard]:
        """
        All printings of a card name.

        Raises:
            TransientUpstreamError: timeout or 5xx
            UpstreamError: other HTTP failures
        """
        pass


class PokemonTCGCatalog(BaseCardCatalog):
    """
    requests-based client for the v2 /cards endpoint.

    Usage:
        catalog = PokemonTCGCatalog()
        printings = catalog.search_by_name("Charizard VMAX")
    """

    def __init__(
        self,
        api_key: Optional[str] = POKEMONTCG_API_KEY,
        base_url: str = POKEMONTCG_API_URL,
        timeout: float = CATALOG_TIMEOUT_SECONDS,
        page_size: int = CATALOG_PAGE_SIZE,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    def search(self, query: str, page_size: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Run a raw card search.

        Args:
            query: pokemontcg.io query string (e.g. 'name:"Pikachu" set.name:*Base*')
            page_size: Result cap (defaults to the client page size)

        Returns:
            Raw card dicts from the response 'data' array
        """
        params = {"q": query, "pageSize": page_size or self.page_size}
        logger.debug(f"Catalog search q={query!r} pageSize={params['pageSize']}")
        try:
            response = self.session.get(
                f"{self.base_url}/cards",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransientUpstreamError(
                f"Pokemon TCG API request timed out after {self.timeout:.0f} seconds", source="pokemontcg"
            ) from e
        except requests.RequestException as e:
            raise TransientUpstreamError(f"Pokemon TCG API connection failed: {e}", source="pokemontcg") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(
                f"Pokemon TCG API error: {response.status_code} {response.reason}", source="pokemontcg"
            )
        if not response.ok:
            raise UpstreamError(
                f"Pokemon TCG API error: {response.status_code} {response.reason}", source="pokemontcg"
            )

        payload = response.json()
        if not isinstance(payload, dict):
            return []
        return payload.get("data") or []

    def search_by_name(self, name: str) -> List[CatalogCard]:
        clean = clean_query_term(name)
        if not clean:
            return []
        cards = [CatalogCard.from_api(d) for d in self.search(f'name:"{clean}"')]
        logger.info(f"Catalog returned {len(cards)} printing(s) of '{clean}'")
        return cards
