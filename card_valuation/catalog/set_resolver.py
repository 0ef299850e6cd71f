"""
Set resolution by collector number.

Given a card name and the collector number read off the card, pick which
printing it is:

1. exact collector number match (case, whitespace and leading zeros ignored)
   -> confidence 1.0
2. same card number, different or missing printed total -> 0.85
3. otherwise the most recently released printing -> 0.5

Catalog timeouts and errors resolve to None so the caller keeps its own set
guess.
"""

import logging
import re
from datetime import datetime
from typing import List, Optional

from card_valuation.catalog.pokemontcg import BaseCardCatalog, CatalogCard
from card_valuation.errors import FatalPipelineError, TransientUpstreamError
from card_valuation.models import SetMatch

logger = logging.getLogger(__name__)

EXACT_MATCH_CONFIDENCE = 1.0
NUMBER_ONLY_CONFIDENCE = 0.85
MOST_RECENT_CONFIDENCE = 0.5

_WHITESPACE = re.compile(r"\s+")


def _strip_zeros(part: str) -> str:
    stripped = part.lstrip("0")
    return stripped or ("0" if part else "")


def normalize_collector_number(number: Optional[str]) -> str:
    """
    Canonical form for comparison: uppercase, no whitespace, leading zeros
    removed from each side of the slash.

    "018/195" -> "18/195", " swsh 050 " -> "SWSH050", "007" -> "7"
    """
    if not number:
        return ""
    compact = _WHITESPACE.sub("", number.upper())
    return "/".join(_strip_zeros(part) for part in compact.split("/"))


def card_number_part(number: Optional[str]) -> str:
    """Numerator of a normalized collector number ("18/195" -> "18")."""
    return normalize_collector_number(number).split("/")[0]


def _catalog_number(card: CatalogCard) -> str:
    """The card's full X/Y number; the API stores only X with the total on the set."""
    number = card.number or ""
    if "/" not in number and card.printed_total:
        number = f"{number}/{card.printed_total}"
    return normalize_collector_number(number)


def _release_key(card: CatalogCard) -> datetime:
    for fmt in ("%Y/%m/%d", "%Y-%m-%d"):
        try:
            return datetime.strptime(card.release_date or "", fmt)
        except ValueError:
            continue
    return datetime.min


def _to_match(card: CatalogCard, confidence: float, reason: str) -> SetMatch:
    return SetMatch(
        set_name=card.set_name,
        set_series=card.set_series,
        set_id=card.set_id,
        collector_number=card.number,
        rarity=card.rarity,
        release_date=card.release_date,
        confidence=confidence,
        match_reason=reason,
    )


class SetResolver:
    """
    Resolves the printing of a card through the catalog.

    Usage:
        resolver = SetResolver(PokemonTCGCatalog())
        match = resolver.resolve_set("Charizard VMAX", "018/195")
    """

    def __init__(self, catalog: BaseCardCatalog):
        self.catalog = catalog

    def resolve_set(self, card_name: Optional[str], collector_number: Optional[str] = None) -> Optional[SetMatch]:
        """
        Args:
            card_name: Card name from reasoning
            collector_number: Collector number read off the card, if any

        Returns:
            SetMatch, or None when there is no name, no printing, or the
            catalog could not be reached
        """
        if not card_name or not card_name.strip():
            logger.warning("Cannot resolve set without card name")
            return None

        try:
            cards = self.catalog.search_by_name(card_name)
        except FatalPipelineError:
            raise
        except TransientUpstreamError as e:
            logger.warning(f"Catalog lookup for '{card_name}' failed transiently ({e}); keeping reasoning set")
            return None
        except Exception as e:
            logger.error(f"Failed to resolve set for '{card_name}': {e}")
            return None

        if not cards:
            logger.info(f"No catalog printings found for '{card_name}'")
            return None

        logger.info(f"Found {len(cards)} printing(s) of '{card_name}': "
                    f"{[(c.set_name, c.number) for c in cards[:10]]}")

        if collector_number and normalize_collector_number(collector_number):
            match = self.find_exact_match(cards, collector_number) or self.find_number_match(cards, collector_number)
            if match:
                logger.info(f"Resolved '{card_name}' #{collector_number} -> {match.set_name} "
                            f"({match.match_reason}, {match.confidence})")
                return match

        match = self.most_recent_printing(cards)
        logger.info(f"Using most recent printing for '{card_name}': {match.set_name}")
        return match

    @staticmethod
    def find_exact_match(cards: List[CatalogCard], collector_number: str) -> Optional[SetMatch]:
        target = normalize_collector_number(collector_number)
        for card in cards:
            if target in (_catalog_number(card), normalize_collector_number(card.number)):
                return _to_match(card, EXACT_MATCH_CONFIDENCE, "Exact collector number match")
        return None

    @staticmethod
    def find_number_match(cards: List[CatalogCard], collector_number: str) -> Optional[SetMatch]:
        target = card_number_part(collector_number)
        if not target:
            return None
        for card in cards:
            if card_number_part(card.number) == target:
                return _to_match(card, NUMBER_ONLY_CONFIDENCE, "Fuzzy collector number match (card number only)")
        return None

    @staticmethod
    def most_recent_printing(cards: List[CatalogCard]) -> SetMatch:
        latest = max(cards, key=_release_key)
        return _to_match(latest, MOST_RECENT_CONFIDENCE, "Most recent printing (no collector number match)")
