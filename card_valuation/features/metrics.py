"""
Pixel and layout metrics for the feature envelope.

Every function here is pure and read-only over its inputs, so the extractor
can run them concurrently over the same image buffer. Each one returns a
zeroed metric on failure instead of raising; one bad metric must not sink the
rest of the envelope.
"""

import io
import logging
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from card_valuation.config import (
    BLUR_NORMALIZER, GLARE_FRACTION_THRESHOLD, GLARE_PIXEL_THRESHOLD
)
from card_valuation.models import (
    BlockType, BorderMetrics, FontMetrics, ImageMeta, Label, OCRBlock, QualityMetrics
)

logger = logging.getLogger(__name__)

BORDER_THICKNESS_RATIO = 0.05
HOLO_SAMPLE_STEP = 5
HOLO_VARIANCE_NORMALIZER = 10000.0
GLARE_SAMPLE_STEP = 10
ALIGNMENT_VARIANCE_SCALE = 100.0
SAME_LINE_TOLERANCE = 0.5  # fraction of word height

HOLO_LABELS = {"shiny", "metallic", "reflective", "glossy", "holographic", "holo"}


def _to_gray(image: np.ndarray) -> np.ndarray:
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def decode_image(data: bytes) -> Tuple[Optional[np.ndarray], str]:
    """
    Decode image bytes to a BGR array.

    Formats OpenCV cannot read but Pillow can (GIF, palette PNG, some TIFF
    and WEBP variants) are converted to PNG first.

    Returns:
        (bgr_image or None, original format name in lowercase or 'unknown')
    """
    fmt = "unknown"
    pil_image = None
    try:
        pil_image = Image.open(io.BytesIO(data))
        fmt = (pil_image.format or "unknown").lower()
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Pillow could not identify image: {e}")

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is not None:
        return image, fmt

    if pil_image is None:
        return None, fmt

    try:
        converted = io.BytesIO()
        pil_image.convert("RGB").save(converted, format="PNG")
        image = cv2.imdecode(np.frombuffer(converted.getvalue(), dtype=np.uint8), cv2.IMREAD_COLOR)
        logger.info(f"Converted {fmt} image to PNG for analysis")
        return image, fmt
    except (OSError, ValueError) as e:
        logger.warning(f"Could not convert {fmt} image: {e}")
        return None, fmt


def image_meta(image: Optional[np.ndarray], fmt: str, size_bytes: int) -> ImageMeta:
    if image is None:
        return ImageMeta(width=0, height=0, format=fmt, size_bytes=size_bytes)
    h, w = image.shape[:2]
    return ImageMeta(width=int(w), height=int(h), format=fmt, size_bytes=size_bytes)


def border_metrics(image: np.ndarray) -> BorderMetrics:
    """
    Mean brightness of each border strip and their symmetry.

    Strip thickness is 5% of the shorter side. Symmetry is 1.0 when opposite
    borders are equally bright.
    """
    try:
        gray = _to_gray(image)
        h, w = gray.shape[:2]
        thickness = max(1, int(min(h, w) * BORDER_THICKNESS_RATIO))

        top = float(gray[:thickness, :].mean()) / 255.0
        bottom = float(gray[h - thickness:, :].mean()) / 255.0
        left = float(gray[:, :thickness].mean()) / 255.0
        right = float(gray[:, w - thickness:].mean()) / 255.0

        symmetry = ((1.0 - abs(top - bottom)) + (1.0 - abs(left - right))) / 2.0
        return BorderMetrics(
            top_ratio=round(top, 4),
            bottom_ratio=round(bottom, 4),
            left_ratio=round(left, 4),
            right_ratio=round(right, 4),
            symmetry_score=round(symmetry, 4),
        )
    except Exception as e:
        logger.error(f"Border metrics failed: {e}")
        return BorderMetrics()


def has_holo_label(labels: Iterable[Label]) -> bool:
    return any(label.name.lower() in HOLO_LABELS for label in labels)


def holo_variance(image: np.ndarray, labels: Iterable[Label]) -> float:
    """
    Colour variance of the card centre, only when the surface looks foil.

    Args:
        image: BGR image
        labels: Surface labels from the vision service

    Returns:
        0.0 without a shiny/metallic/reflective/glossy label, otherwise the
        mean per-channel variance of the centre 50% (sampled every 5 px)
        scaled into [0, 1]
    """
    try:
        if not has_holo_label(labels) or len(image.shape) != 3:
            return 0.0

        h, w = image.shape[:2]
        region = image[h // 4:(3 * h) // 4, w // 4:(3 * w) // 4]
        samples = region[::HOLO_SAMPLE_STEP, ::HOLO_SAMPLE_STEP].reshape(-1, 3).astype(np.float64)
        if samples.size == 0:
            return 0.0

        avg_variance = float(samples.var(axis=0).mean())
        return round(min(avg_variance / HOLO_VARIANCE_NORMALIZER, 1.0), 4)
    except Exception as e:
        logger.error(f"Holo variance failed: {e}")
        return 0.0


def font_metrics(blocks: List[OCRBlock]) -> FontMetrics:
    """
    Typography consistency from OCR geometry.

    kerning: gaps between consecutive words on the same line
    alignment: 1.0 when LINE blocks share left/right edges, falling with
               edge variance (1.0 with one line or fewer)
    font_size_variance: variance of LINE heights
    """
    try:
        if not blocks:
            return FontMetrics()

        words = sorted(
            (b for b in blocks if b.type == BlockType.WORD),
            key=lambda b: (b.bounding_box.top, b.bounding_box.left)
        )
        lines = [b for b in blocks if b.type == BlockType.LINE]

        kerning: List[float] = []
        for prev, cur in zip(words, words[1:]):
            pb, cb = prev.bounding_box, cur.bounding_box
            same_line = abs(pb.top - cb.top) <= max(pb.height, cb.height) * SAME_LINE_TOLERANCE
            if same_line and cb.left >= pb.left:
                kerning.append(round(cb.left - pb.right, 4))

        if len(lines) <= 1:
            alignment = 1.0
        else:
            lefts = np.array([b.bounding_box.left for b in lines])
            rights = np.array([b.bounding_box.right for b in lines])
            avg_var = (float(lefts.var()) + float(rights.var())) / 2.0
            alignment = max(0.0, 1.0 - avg_var * ALIGNMENT_VARIANCE_SCALE)

        heights = np.array([b.bounding_box.height for b in lines]) if lines else np.array([])
        size_variance = float(heights.var()) if heights.size else 0.0

        return FontMetrics(
            kerning=kerning,
            alignment=round(alignment, 4),
            font_size_variance=round(size_variance, 6),
        )
    except Exception as e:
        logger.error(f"Font metrics failed: {e}")
        return FontMetrics()


def quality_metrics(image: np.ndarray) -> QualityMetrics:
    """
    Capture quality.

    blur_score: Laplacian variance scaled to [0, 1], higher is sharper
    glare_detected: more than 15% of sampled pixels are blown out
    brightness: mean grey level in [0, 1]
    """
    try:
        gray = _to_gray(image)
        laplacian_var = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        blur_score = min(laplacian_var / BLUR_NORMALIZER, 1.0)

        sampled = gray[::GLARE_SAMPLE_STEP, ::GLARE_SAMPLE_STEP]
        glare_fraction = float((sampled > GLARE_PIXEL_THRESHOLD).mean()) if sampled.size else 0.0

        return QualityMetrics(
            blur_score=round(blur_score, 4),
            glare_detected=glare_fraction > GLARE_FRACTION_THRESHOLD,
            brightness=round(float(gray.mean()) / 255.0, 4),
        )
    except Exception as e:
        logger.error(f"Quality metrics failed: {e}")
        return QualityMetrics()
