"""
card_valuation/features/extractor.py: Image -> FeatureEnvelope

Loads the image, crops to the card, then runs OCR, surface labelling and
pixel metrics concurrently over the same read-only buffer.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar

import numpy as np

from card_valuation.config import EXTRACTION_WORKERS
from card_valuation.detection.card_detector import detect_card_region
from card_valuation.features import metrics
from card_valuation.models import BorderMetrics, FeatureEnvelope, ImageMeta, QualityMetrics
from card_valuation.ocr.base_ocr import BaseVisionService
from card_valuation.storage.image_store import BaseImageStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _result_or(future: Future, default: T, what: str) -> T:
    try:
        return future.result()
    except Exception as e:
        logger.error(f"{what} failed: {e}")
        return default


class FeatureExtractionService:
    """
    Turns an image reference into a FeatureEnvelope.

    Contract: a readable image never raises; an unreadable one yields an
    envelope with empty OCR and zeroed metrics. Only a missing image
    (ImageNotFoundError from the store) propagates.

    Usage:
        service = FeatureExtractionService(LocalImageStore(), TesseractVisionService())
        envelope = service.extract("uploads/charizard.jpg")
    """

    def __init__(
        self,
        image_store: BaseImageStore,
        vision: BaseVisionService,
        max_workers: int = EXTRACTION_WORKERS,
        detect_region: Callable = detect_card_region
    ):
        self.image_store = image_store
        self.vision = vision
        self.max_workers = max_workers
        self._detect_region = detect_region

    def extract(self, image_ref: str) -> FeatureEnvelope:
        """
        Extract features for a stored image.

        Raises:
            ImageNotFoundError: the reference does not exist
        """
        data = self.image_store.get_image_bytes(image_ref)
        logger.info(f"Extracting features from {image_ref} ({len(data)} bytes)")
        return self.extract_from_bytes(data)

    def extract_from_bytes(self, data: bytes) -> FeatureEnvelope:
        image, fmt = metrics.decode_image(data)
        if image is None:
            logger.warning(f"Unreadable image ({fmt}, {len(data)} bytes); returning empty envelope")
            return FeatureEnvelope(image_meta=metrics.image_meta(None, fmt, len(data)))

        meta = metrics.image_meta(image, fmt, len(data))
        card = self._crop_to_card(image)
        return self.extract_from_array(card, meta)

    def _crop_to_card(self, image: np.ndarray) -> np.ndarray:
        try:
            region = self._detect_region(image)
            logger.debug(f"Card region method={region.method} aspect={region.aspect_ratio:.2f}")
            return region.image
        except Exception as e:
            logger.warning(f"Boundary detection failed ({e}), analysing full image")
            return image

    def extract_from_array(self, card: np.ndarray, meta: ImageMeta) -> FeatureEnvelope:
        """
        Run OCR, labels and pixel metrics concurrently on a decoded card image.

        Args:
            card: BGR card image (already cropped)
            meta: ImageMeta describing the original upload
        """
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="extract") as pool:
            ocr_future = pool.submit(self.vision.detect_text, card)
            labels_future = pool.submit(self.vision.detect_labels, card)
            borders_future = pool.submit(metrics.border_metrics, card)
            quality_future = pool.submit(metrics.quality_metrics, card)

            ocr = _result_or(ocr_future, [], "Text detection")
            labels = _result_or(labels_future, [], "Label detection")
            borders = _result_or(borders_future, BorderMetrics(), "Border metrics")
            quality = _result_or(quality_future, QualityMetrics(), "Quality metrics")

        holo = metrics.holo_variance(card, labels)
        fonts = metrics.font_metrics(ocr)

        envelope = FeatureEnvelope(
            ocr=ocr,
            labels=labels,
            borders=borders,
            holo_variance=holo,
            font_metrics=fonts,
            quality=quality,
            image_meta=meta,
        )
        logger.info(
            f"Features: {len(envelope.lines)} lines, {len(envelope.words)} words, "
            f"holo={holo:.2f}, blur={quality.blur_score:.2f}, glare={quality.glare_detected}"
        )
        return envelope
