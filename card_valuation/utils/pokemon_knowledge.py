"""
Pokemon TCG reference data.

Known English sets, rarity text patterns, copyright-era regexes and
collector-number formats. Used to sanity-check LLM output, to give the
fallback path something to work with, and to score era consistency in the
authenticity branch.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from card_valuation.utils.fuzzy_matching import find_best_match, normalize_for_comparison

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PokemonSet:
    """Reference entry for one expansion."""

    symbol: str
    """pokemontcg.io style set id (e.g. 'swsh9')."""

    years: Tuple[int, ...]
    """Release year(s)."""

    aliases: Tuple[str, ...] = ()
    """Alternative names seen on packaging and listings."""


POKEMON_SETS: Dict[str, PokemonSet] = {
    # Wizards of the Coast era (1999-2003)
    "Base Set": PokemonSet("base", (1999,), ("Base", "Original Base Set")),
    "Base Set 2": PokemonSet("base2", (2000,), ("Base 2",)),
    "Jungle": PokemonSet("jungle", (1999,)),
    "Fossil": PokemonSet("fossil", (1999,)),
    "Team Rocket": PokemonSet("teamrocket", (2000,), ("Rocket",)),
    "Gym Heroes": PokemonSet("gymheroes", (2000,)),
    "Gym Challenge": PokemonSet("gymchallenge", (2000,)),
    "Neo Genesis": PokemonSet("neogenesis", (2000,)),
    "Neo Discovery": PokemonSet("neodiscovery", (2001,)),
    "Neo Revelation": PokemonSet("neorevelation", (2001,)),
    "Neo Destiny": PokemonSet("neodestiny", (2002,)),
    "Legendary Collection": PokemonSet("legendary", (2002,)),
    "Expedition Base Set": PokemonSet("expedition", (2002,), ("Expedition",)),
    "Aquapolis": PokemonSet("aquapolis", (2003,)),
    "Skyridge": PokemonSet("skyridge", (2003,)),

    # EX era (2003-2007)
    "EX Ruby & Sapphire": PokemonSet("ex1", (2003,), ("Ruby Sapphire",)),
    "EX Sandstorm": PokemonSet("ex2", (2003,)),
    "EX Dragon": PokemonSet("ex3", (2003,)),
    "EX Team Magma vs Team Aqua": PokemonSet("ex4", (2004,), ("Magma vs Aqua",)),
    "EX Hidden Legends": PokemonSet("ex5", (2004,)),
    "EX FireRed & LeafGreen": PokemonSet("ex6", (2004,), ("FireRed LeafGreen", "FRLG")),
    "EX Team Rocket Returns": PokemonSet("ex7", (2004,), ("Rocket Returns",)),
    "EX Deoxys": PokemonSet("ex8", (2005,)),
    "EX Emerald": PokemonSet("ex9", (2005,)),
    "EX Unseen Forces": PokemonSet("ex10", (2005,)),
    "EX Delta Species": PokemonSet("ex11", (2005,)),
    "EX Legend Maker": PokemonSet("ex12", (2006,)),
    "EX Holon Phantoms": PokemonSet("ex13", (2006,)),
    "EX Crystal Guardians": PokemonSet("ex14", (2006,)),
    "EX Dragon Frontiers": PokemonSet("ex15", (2006,)),
    "EX Power Keepers": PokemonSet("ex16", (2007,)),

    # Diamond & Pearl era (2007-2009)
    "Diamond & Pearl": PokemonSet("dp1", (2007,), ("DP Base",)),
    "Mysterious Treasures": PokemonSet("dp2", (2007,)),
    "Secret Wonders": PokemonSet("dp3", (2007,)),
    "Great Encounters": PokemonSet("dp4", (2008,)),
    "Majestic Dawn": PokemonSet("dp5", (2008,)),
    "Legends Awakened": PokemonSet("dp6", (2008,)),
    "Stormfront": PokemonSet("dp7", (2008,)),

    # Platinum era (2009-2010)
    "Platinum": PokemonSet("pl1", (2009,)),
    "Rising Rivals": PokemonSet("pl2", (2009,)),
    "Supreme Victors": PokemonSet("pl3", (2009,)),
    "Arceus": PokemonSet("pl4", (2009,)),

    # HeartGold & SoulSilver era (2010-2011)
    "HeartGold & SoulSilver": PokemonSet("hgss1", (2010,), ("HGSS Base",)),
    "Unleashed": PokemonSet("hgss2", (2010,)),
    "Undaunted": PokemonSet("hgss3", (2010,)),
    "Triumphant": PokemonSet("hgss4", (2010,)),
    "Call of Legends": PokemonSet("col1", (2011,)),

    # Black & White era (2011-2013)
    "Black & White": PokemonSet("bw1", (2011,), ("BW Base",)),
    "Emerging Powers": PokemonSet("bw2", (2011,)),
    "Noble Victories": PokemonSet("bw3", (2011,)),
    "Next Destinies": PokemonSet("bw4", (2012,)),
    "Dark Explorers": PokemonSet("bw5", (2012,)),
    "Dragons Exalted": PokemonSet("bw6", (2012,)),
    "Boundaries Crossed": PokemonSet("bw7", (2012,)),
    "Plasma Storm": PokemonSet("bw8", (2013,)),
    "Plasma Freeze": PokemonSet("bw9", (2013,)),
    "Plasma Blast": PokemonSet("bw10", (2013,)),
    "Legendary Treasures": PokemonSet("bw11", (2013,)),

    # XY era (2014-2016)
    "XY": PokemonSet("xy1", (2014,), ("XY Base",)),
    "Flashfire": PokemonSet("xy2", (2014,)),
    "Furious Fists": PokemonSet("xy3", (2014,)),
    "Phantom Forces": PokemonSet("xy4", (2014,)),
    "Primal Clash": PokemonSet("xy5", (2015,)),
    "Roaring Skies": PokemonSet("xy6", (2015,)),
    "Ancient Origins": PokemonSet("xy7", (2015,)),
    "BREAKthrough": PokemonSet("xy8", (2015,)),
    "BREAKpoint": PokemonSet("xy9", (2016,)),
    "Fates Collide": PokemonSet("xy10", (2016,)),
    "Steam Siege": PokemonSet("xy11", (2016,)),
    "Evolutions": PokemonSet("xy12", (2016,)),

    # Sun & Moon era (2017-2019)
    "Sun & Moon": PokemonSet("sm1", (2017,), ("SM Base",)),
    "Guardians Rising": PokemonSet("sm2", (2017,)),
    "Burning Shadows": PokemonSet("sm3", (2017,)),
    "Crimson Invasion": PokemonSet("sm4", (2017,)),
    "Ultra Prism": PokemonSet("sm5", (2018,)),
    "Forbidden Light": PokemonSet("sm6", (2018,)),
    "Celestial Storm": PokemonSet("sm7", (2018,)),
    "Lost Thunder": PokemonSet("sm8", (2018,)),
    "Team Up": PokemonSet("sm9", (2019,)),
    "Unbroken Bonds": PokemonSet("sm10", (2019,)),
    "Unified Minds": PokemonSet("sm11", (2019,)),
    "Cosmic Eclipse": PokemonSet("sm12", (2019,)),

    # Sword & Shield era (2020-2023)
    "Sword & Shield": PokemonSet("swsh1", (2020,), ("SWSH Base",)),
    "Rebel Clash": PokemonSet("swsh2", (2020,)),
    "Darkness Ablaze": PokemonSet("swsh3", (2020,)),
    "Vivid Voltage": PokemonSet("swsh4", (2020,)),
    "Shining Fates": PokemonSet("swsh45", (2021,)),
    "Battle Styles": PokemonSet("swsh5", (2021,)),
    "Chilling Reign": PokemonSet("swsh6", (2021,)),
    "Evolving Skies": PokemonSet("swsh7", (2021,)),
    "Fusion Strike": PokemonSet("swsh8", (2021,)),
    "Brilliant Stars": PokemonSet("swsh9", (2022,)),
    "Astral Radiance": PokemonSet("swsh10", (2022,)),
    "Lost Origin": PokemonSet("swsh11", (2022,)),
    "Silver Tempest": PokemonSet("swsh12", (2022,)),
    "Crown Zenith": PokemonSet("swsh12pt5", (2023,)),

    # Scarlet & Violet era (2023-)
    "Scarlet & Violet": PokemonSet("sv1", (2023,), ("SV Base",)),
    "Paldea Evolved": PokemonSet("sv2", (2023,)),
    "Obsidian Flames": PokemonSet("sv3", (2023,)),
    "151": PokemonSet("sv3pt5", (2023,), ("Pokemon 151", "One Fifty One")),
    "Paradox Rift": PokemonSet("sv4", (2023,)),
    "Paldean Fates": PokemonSet("sv4pt5", (2024,)),
    "Temporal Forces": PokemonSet("sv5", (2024,)),
    "Twilight Masquerade": PokemonSet("sv6", (2024,)),
    "Shrouded Fable": PokemonSet("sv6pt5", (2024,)),
    "Stellar Crown": PokemonSet("sv7", (2024,)),
    "Surging Sparks": PokemonSet("sv8", (2024,)),
    "Prismatic Evolutions": PokemonSet("sv8pt5", (2025,)),
}


# Rarity -> lowercase text patterns. Short patterns are matched as whole words.
RARITY_PATTERNS: Dict[str, List[str]] = {
    "Common": ["common", "●", "circle"],
    "Uncommon": ["uncommon", "◆", "diamond"],
    "Rare": ["rare", "★", "star"],
    "Holo Rare": ["holo rare", "holographic", "holo", "shiny"],
    "Reverse Holo": ["reverse holo", "reverse holographic"],
    "Ultra Rare": ["ultra rare", "ur"],
    "Secret Rare": ["secret rare", "sr"],
    "Rare Holo EX": ["ex", "holo ex"],
    "Rare Holo GX": ["gx", "holo gx"],
    "Rare Holo V": ["v", "holo v"],
    "Rare Holo VMAX": ["vmax", "holo vmax"],
    "Rare Holo VSTAR": ["vstar", "holo vstar"],
    "Amazing Rare": ["amazing rare", "amazing"],
    "Radiant Rare": ["radiant", "radiant rare"],
    "Illustration Rare": ["illustration rare", "ir"],
    "Special Illustration Rare": ["special illustration rare", "sir"],
    "Hyper Rare": ["hyper rare", "hr"],
}


# Copyright line -> era. Checked in insertion order; first hit wins.
COPYRIGHT_PATTERNS: Dict[str, re.Pattern] = {
    "WOTC Era (1999-2003)": re.compile(r"©\s*199[5-9].*Wizards", re.IGNORECASE),
    "WOTC Era Alt": re.compile(r"©.*Wizards.*199[5-9]", re.IGNORECASE),
    "Nintendo Era (2003-2016)": re.compile(r"©.*Nintendo.*Creatures.*GAMEFREAK", re.IGNORECASE),
    "Modern Era (2016+)": re.compile(r"©.*Pokémon.*©.*Nintendo", re.IGNORECASE),
    "Modern Era Alt": re.compile(r"©.*Nintendo.*©.*Creatures", re.IGNORECASE),
    "TPCi Era": re.compile(r"©.*The Pokémon Company International", re.IGNORECASE),
}

# Release years each era can plausibly print
ERA_YEAR_RANGES: Dict[str, Tuple[int, int]] = {
    "WOTC Era (1999-2003)": (1999, 2003),
    "WOTC Era Alt": (1999, 2003),
    "Nintendo Era (2003-2016)": (2003, 2016),
    "Modern Era (2016+)": (2016, 9999),
    "Modern Era Alt": (2016, 9999),
    "TPCi Era": (2003, 9999),
}

COLLECTOR_NUMBER_PATTERNS: List[re.Pattern] = [
    re.compile(r"\b(\d{1,3})/(\d{1,3})\b"),            # 25/102
    re.compile(r"\b(\d{1,3})\s*/\s*(\d{1,3})\b"),      # 25 / 102
    re.compile(r"\bNo\.\s*(\d{1,3})/(\d{1,3})\b", re.IGNORECASE),  # No. 25/102
]

# Look-alike characters OCR puts in place of digits
OCR_DIGIT_SUBSTITUTIONS = str.maketrans({
    "O": "0", "o": "0", "D": "0", "Q": "0",
    "l": "1", "I": "1", "i": "1", "|": "1",
    "S": "5", "s": "5", "B": "8", "Z": "2", "G": "6",
})

_NUMBER_LIKE = re.compile(r"([0-9OoDQlIi|SsBZG]{1,3})\s*/\s*([0-9OoDQlIi|SsBZG]{1,3})")
_COPYRIGHT_YEAR = re.compile(r"(?:©|\(c\)|copyright)\s*((?:19|20)\d{2})", re.IGNORECASE)

HOLO_KEYWORDS = ("holo", "holographic", "shiny", "foil", "reverse")

# Rarity text that implies a foil treatment on the printed card
_HOLO_RARITY_TERMS = (
    "holo", "holographic", "ultra rare", "secret rare", "rainbow rare",
    "full art", "vmax", "vstar", "illustration rare", "hyper rare",
    "radiant", "amazing",
)
_HOLO_RARITY_WORDS = re.compile(r"\b(ex|gx|v)\b", re.IGNORECASE)


def _contains_pattern(text: str, pattern: str) -> bool:
    if len(pattern) <= 4 and pattern.isalpha():
        return re.search(rf"\b{re.escape(pattern)}\b", text) is not None
    return pattern in text


def determine_era(copyright_text: str) -> Optional[str]:
    """Return the era whose copyright regex matches, or None."""
    if not copyright_text:
        return None
    for era, pattern in COPYRIGHT_PATTERNS.items():
        if pattern.search(copyright_text):
            return era
    return None


def extract_copyright_year(text: str) -> Optional[int]:
    """Year following a copyright mark ('© 2022 Pokémon' -> 2022)."""
    if not text:
        return None
    match = _COPYRIGHT_YEAR.search(text)
    return int(match.group(1)) if match else None


def extract_collector_number(text: str) -> Optional[str]:
    """
    Extract a collector number in 'X/Y' form.

    Tries the strict patterns first, then a pass that maps OCR look-alikes
    (O->0, l->1, ...) back to digits.

    Examples:
        >>> extract_collector_number("No. 25/102")
        '25/102'
        >>> extract_collector_number("O18 / l95")
        '018/195'
    """
    if not text:
        return None

    for pattern in COLLECTOR_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return f"{match.group(1)}/{match.group(2)}"

    match = _NUMBER_LIKE.search(text)
    if match:
        numerator = match.group(1).translate(OCR_DIGIT_SUBSTITUTIONS)
        denominator = match.group(2).translate(OCR_DIGIT_SUBSTITUTIONS)
        if numerator.isdigit() and denominator.isdigit():
            logger.debug(f"Collector number OCR substitution: '{match.group(0)}' -> {numerator}/{denominator}")
            return f"{numerator}/{denominator}"

    return None


def detect_rarity(text: str) -> Optional[str]:
    """
    Map free text to a rarity name.

    The longest matching pattern wins, so 'holo vmax' beats 'v'.
    """
    if not text:
        return None
    lowered = text.lower()

    best_rarity = None
    best_length = 0
    for rarity, patterns in RARITY_PATTERNS.items():
        for pattern in patterns:
            if len(pattern) > best_length and _contains_pattern(lowered, pattern):
                best_rarity = rarity
                best_length = len(pattern)
    return best_rarity


def is_holographic_indicator(text: str) -> bool:
    """True if text mentions a holo/foil finish."""
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in HOLO_KEYWORDS)


def is_holo_rarity(rarity: Optional[str]) -> bool:
    """True if a rarity string implies the card is printed with a foil layer."""
    if not rarity:
        return False
    lowered = rarity.lower()
    if any(term in lowered for term in _HOLO_RARITY_TERMS):
        return True
    return _HOLO_RARITY_WORDS.search(lowered) is not None


def get_sets_by_year(year: int) -> List[str]:
    return [name for name, info in POKEMON_SETS.items() if year in info.years]


def find_set_by_symbol(symbol: str) -> Optional[str]:
    if not symbol:
        return None
    normalized = symbol.lower().strip()
    for name, info in POKEMON_SETS.items():
        if info.symbol.lower() == normalized:
            return name
    return None


def find_set_by_name(name: str, threshold: float = 0.85) -> Optional[Tuple[str, float]]:
    """
    Canonicalize a set name.

    Tries exact name, then aliases, then fuzzy matching over names and
    aliases.

    Returns:
        (canonical_name, similarity) or None
    """
    if not name or not name.strip():
        return None

    normalized = normalize_for_comparison(name)
    alias_index: Dict[str, str] = {}
    for canonical, info in POKEMON_SETS.items():
        alias_index[canonical] = canonical
        for alias in info.aliases:
            alias_index[alias] = canonical

    for candidate, canonical in alias_index.items():
        if normalize_for_comparison(candidate) == normalized:
            return canonical, 1.0

    match = find_best_match(name, alias_index.keys(), threshold=threshold)
    if match is None:
        return None
    return alias_index[match.match], match.confidence


def set_release_years(set_name: str) -> Tuple[int, ...]:
    found = find_set_by_name(set_name)
    if found is None:
        return ()
    return POKEMON_SETS[found[0]].years


def era_matches_set(era: str, set_name: str) -> Optional[bool]:
    """
    Check whether a copyright era is compatible with a set's release years.

    Returns:
        True/False, or None if either side is unknown
    """
    year_range = ERA_YEAR_RANGES.get(era)
    years = set_release_years(set_name)
    if year_range is None or not years:
        return None
    low, high = year_range
    return any(low <= year <= high for year in years)
