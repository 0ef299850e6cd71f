"""
Cross-request cache of raw comps.

Keyed by normalized `name|set` and namespaced per source. Cache failures
never fail a pricing request: reads degrade to a miss, writes to a no-op.
"""

import logging
from typing import List, Optional

from pydantic import TypeAdapter

from card_valuation.config import PRICE_CACHE_TTL_SECONDS
from card_valuation.models import RawComp
from card_valuation.storage.kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)

_COMPS = TypeAdapter(List[RawComp])


def cache_key(card_name: str, set_name: Optional[str] = None) -> str:
    normalized_name = (card_name or "").lower().strip()
    normalized_set = (set_name or "").lower().strip() or "unknown"
    return f"{normalized_name}|{normalized_set}"


class PricingCache:
    """
    Usage:
        cache = PricingCache(InMemoryKeyValueStore())
        comps = cache.get("PokemonTCG", "Charizard VMAX", "Brilliant Stars")
    """

    def __init__(self, store: BaseKeyValueStore, ttl_seconds: int = PRICE_CACHE_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(source: str, card_name: str, set_name: Optional[str] = None) -> str:
        return f"{source}:{cache_key(card_name, set_name)}"

    def get(self, source: str, card_name: str, set_name: Optional[str] = None) -> Optional[List[RawComp]]:
        key = self.key_for(source, card_name, set_name)
        try:
            payload = self.store.get(key)
            if payload is None:
                return None
            comps = _COMPS.validate_python(payload)
            logger.info(f"Cache hit {key} ({len(comps)} comps)")
            return comps
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None

    def put(self, source: str, card_name: str, set_name: Optional[str], comps: List[RawComp]) -> bool:
        """Store comps; empty lists are never cached."""
        if not comps:
            return False
        key = self.key_for(source, card_name, set_name)
        try:
            self.store.put(key, _COMPS.dump_python(comps, mode="json"), self.ttl_seconds)
            logger.info(f"Cached {len(comps)} comps under {key} for {self.ttl_seconds}s")
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False
