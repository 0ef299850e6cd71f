"""
Pixel-statistics surface labels.

Foil and holo layers show up in a photo as a wide spread of hues at high
saturation plus small specular highlights. These heuristics turn those
statistics into the same kind of labels a cloud vision API would return.
"""

import logging
from typing import List

import cv2
import numpy as np

from card_valuation.models import Label

logger = logging.getLogger(__name__)

HUE_BINS = 18
SATURATED_MIN_S = 80
SATURATED_MIN_V = 120
SPECULAR_MIN_V = 230
SPECULAR_MAX_S = 40

SHINY_ENTROPY_THRESHOLD = 0.75
METALLIC_ENTROPY_THRESHOLD = 0.85
REFLECTIVE_FRACTION = 0.02
GLOSSY_FRACTION = 0.005
MIN_SATURATED_FRACTION = 0.05

CARD_ASPECT_MIN = 0.6
CARD_ASPECT_MAX = 0.8


def hue_entropy(hsv: np.ndarray) -> float:
    """
    Normalized entropy of the hue histogram over saturated, lit pixels.

    Returns 0.0 when too few pixels qualify to say anything.
    """
    h, s, v = cv2.split(hsv)
    mask = (s >= SATURATED_MIN_S) & (v >= SATURATED_MIN_V)
    if mask.mean() < MIN_SATURATED_FRACTION:
        return 0.0
    hist, _ = np.histogram(h[mask], bins=HUE_BINS, range=(0, 180))
    probs = hist / hist.sum()
    probs = probs[probs > 0]
    entropy = -np.sum(probs * np.log2(probs))
    return float(entropy / np.log2(HUE_BINS))


def specular_fraction(hsv: np.ndarray) -> float:
    """Fraction of very bright, unsaturated pixels (highlights off a glossy surface)."""
    _, s, v = cv2.split(hsv)
    highlights = (v >= SPECULAR_MIN_V) & (s <= SPECULAR_MAX_S)
    return float(highlights.mean())


def detect_surface_labels(image: np.ndarray) -> List[Label]:
    """
    Emit surface labels for a BGR image.

    Args:
        image: BGR image

    Returns:
        Zero or more of 'Card', 'Shiny', 'Metallic', 'Reflective', 'Glossy'
    """
    if image is None or image.size == 0 or len(image.shape) != 3:
        return []

    labels: List[Label] = []
    h, w = image.shape[:2]
    aspect = min(w, h) / max(w, h)
    if CARD_ASPECT_MIN <= aspect <= CARD_ASPECT_MAX:
        labels.append(Label(name="Card", confidence=round(1.0 - abs(aspect - 0.716) * 2, 3)))

    hsv = cv2.cvtColor(image, cv2.COLOR_BGR2HSV)
    entropy = hue_entropy(hsv)
    specular = specular_fraction(hsv)

    if entropy >= SHINY_ENTROPY_THRESHOLD:
        labels.append(Label(name="Shiny", confidence=round(min(entropy, 1.0), 3)))
    if entropy >= METALLIC_ENTROPY_THRESHOLD and specular >= GLOSSY_FRACTION:
        labels.append(Label(name="Metallic", confidence=round(min(entropy * 0.9, 1.0), 3)))
    if specular >= REFLECTIVE_FRACTION:
        labels.append(Label(name="Reflective", confidence=round(min(specular * 10, 1.0), 3)))
    elif specular >= GLOSSY_FRACTION:
        labels.append(Label(name="Glossy", confidence=round(min(specular * 20, 1.0), 3)))

    logger.debug(f"Surface labels: {[l.name for l in labels]} (hue entropy={entropy:.2f}, specular={specular:.3f})")
    return labels
