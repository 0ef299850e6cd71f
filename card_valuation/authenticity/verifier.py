"""
Heuristic authenticity check.

Counterfeits usually give themselves away through blurry or misaligned text,
a missing or unexpected foil layer, uneven borders, and copyright lines that
do not fit the claimed set. Each of these becomes a signal in [0, 1]; the
score is their weighted mean.
"""

import logging
from typing import Optional

from card_valuation.config import AUTHENTICITY_FAKE_THRESHOLD
from card_valuation.models import (
    AuthenticityResult, AuthenticitySignals, CardMetadata, FeatureEnvelope, SetMatch
)
from card_valuation.reasoning.prompts import reasoning_blocks
from card_valuation.utils import pokemon_knowledge as kb

logger = logging.getLogger(__name__)

SIGNAL_WEIGHTS = {
    "text_match_confidence": 0.25,
    "holo_pattern_confidence": 0.25,
    "border_consistency": 0.20,
    "font_validation": 0.15,
    "era_consistency": 0.15,
}

EXPECTED_HOLO_VARIANCE = 0.3  # variance at which a foil card reads as fully holo
UNEXPECTED_HOLO_VARIANCE = 0.5
FONT_VARIANCE_PENALTY = 100.0

ERA_CONSISTENT = 1.0
ERA_UNKNOWN = 0.5
ERA_INCONSISTENT = 0.2


def holo_signal(holo_variance: float, rarity: Optional[str]) -> float:
    """How well the measured foil variance fits what the rarity implies."""
    if kb.is_holo_rarity(rarity):
        return round(min(1.0, holo_variance / EXPECTED_HOLO_VARIANCE), 4)
    return 1.0 if holo_variance < UNEXPECTED_HOLO_VARIANCE else 0.6


def era_signal(copyright_text: str, set_name: Optional[str]) -> float:
    era = kb.determine_era(copyright_text)
    if not era or not set_name:
        return ERA_UNKNOWN
    consistent = kb.era_matches_set(era, set_name)
    if consistent is None:
        return ERA_UNKNOWN
    return ERA_CONSISTENT if consistent else ERA_INCONSISTENT


class AuthenticityVerifier:
    """
    Usage:
        result = AuthenticityVerifier().verify(envelope, metadata, set_match)
    """

    def __init__(self, fake_threshold: float = AUTHENTICITY_FAKE_THRESHOLD):
        self.fake_threshold = fake_threshold

    def compute_signals(
        self,
        envelope: FeatureEnvelope,
        metadata: CardMetadata,
        set_match: Optional[SetMatch] = None
    ) -> AuthenticitySignals:
        blocks = reasoning_blocks(envelope)
        text_match = sum(b.confidence for b in blocks) / len(blocks) if blocks else 0.0

        fonts = envelope.font_metrics
        font_validation = fonts.alignment * max(0.0, 1.0 - fonts.font_size_variance * FONT_VARIANCE_PENALTY)

        copyright_text = metadata.copyright_run.value or " ".join(b.text for b in blocks)
        set_name = set_match.set_name if set_match is not None else metadata.set_name

        return AuthenticitySignals(
            text_match_confidence=round(text_match, 4),
            holo_pattern_confidence=holo_signal(envelope.holo_variance, metadata.rarity.value),
            border_consistency=round(envelope.borders.symmetry_score, 4),
            font_validation=round(font_validation, 4),
            era_consistency=era_signal(copyright_text, set_name),
        )

    def verify(
        self,
        envelope: FeatureEnvelope,
        metadata: CardMetadata,
        set_match: Optional[SetMatch] = None
    ) -> AuthenticityResult:
        """
        Args:
            envelope: Extracted features
            metadata: Reasoned card identity
            set_match: Catalog-resolved set, preferred over the reasoning guess

        Returns:
            AuthenticityResult; fake_detected is never set without OCR evidence
        """
        signals = self.compute_signals(envelope, metadata, set_match)
        values = signals.model_dump()
        score = sum(values[name] * weight for name, weight in SIGNAL_WEIGHTS.items()) / sum(SIGNAL_WEIGHTS.values())
        score = round(min(max(score, 0.0), 1.0), 4)

        if not envelope.ocr:
            rationale = "Insufficient text to assess authenticity; manual review recommended."
            fake = False
        else:
            weak = [name for name, value in values.items() if value < self.fake_threshold]
            fake = score < self.fake_threshold
            if weak:
                rationale = f"Score {score:.2f}; weak signals: {', '.join(weak)}."
            else:
                rationale = f"Score {score:.2f}; all signals consistent with a genuine card."

        logger.info(f"Authenticity score={score:.2f} fake_detected={fake}")
        return AuthenticityResult(
            authenticity_score=score,
            fake_detected=fake,
            signals=signals,
            rationale=rationale,
        )
