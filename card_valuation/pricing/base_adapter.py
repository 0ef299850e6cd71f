"""
Price-source adapter base class.

Each adapter owns a TokenBucket sized to its source's per-minute quota, so
adapters never share limiter state. fetch_comps() returns [] for "no match"
and raises only for transport/auth problems or an exhausted rate budget.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from card_valuation.config import PRICE_ADAPTER_TIMEOUT_SECONDS
from card_valuation.errors import RateLimitExceededError
from card_valuation.models import PriceQuery, RawComp
from card_valuation.utils.rate_limit import TokenBucket

logger = logging.getLogger(__name__)


class BasePriceAdapter(ABC):
    """Abstract price source."""

    name: str = "base"

    def __init__(
        self,
        requests_per_minute: int,
        timeout: float = PRICE_ADAPTER_TIMEOUT_SECONDS,
        bucket: Optional[TokenBucket] = None
    ):
        """
        Args:
            requests_per_minute: Source quota used to size this adapter's bucket
            timeout: Budget for one fetch, including the wait for a token
            bucket: Pre-built bucket (tests inject one with a fake clock)
        """
        self.timeout = timeout
        self.bucket = bucket or TokenBucket(requests_per_minute)

    def is_available(self) -> bool:
        """False when the adapter is not configured (e.g. missing API key)."""
        return True

    def fetch_comps(self, query: PriceQuery) -> List[RawComp]:
        """
        Fetch comparable prices for a query.

        Raises:
            RateLimitExceededError: no token within the adapter timeout
            UpstreamError: transport or auth failure
        """
        if not self.bucket.acquire(timeout=self.timeout):
            raise RateLimitExceededError(
                f"{self.name}: no rate-limit token within {self.timeout:.0f}s", source=self.name
            )
        comps = self._fetch_comps_internal(query)
        logger.debug(f"{self.name}: {len(comps)} comps for '{query.card_name}'")
        return comps

    @abstractmethod
    def _fetch_comps_internal(self, query: PriceQuery) -> List[RawComp]:
        pass
