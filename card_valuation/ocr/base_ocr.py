"""
Base vision service interface.

Defines the abstract OCR/label capability the feature extractor depends on,
allowing swappable implementations (Tesseract, a cloud vision API, fakes in
tests).
"""

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from card_valuation.models import Label, OCRBlock


class BaseVisionService(ABC):
    """
    Abstract base class for vision services.

    Implementations should return:
    - LINE and WORD blocks with bounding boxes normalized to [0, 1]
    - confidences scaled to [0, 1]
    - scene labels describing the card surface (e.g. 'Shiny', 'Reflective')

    Example usage:
        vision = TesseractVisionService()
        blocks = vision.detect_text(image)
        for block in blocks:
            print(f"{block.type.value}: {block.text} ({block.confidence:.2f})")
    """

    @abstractmethod
    def detect_text(self, image: np.ndarray) -> List[OCRBlock]:
        """
        Detect text in an image.

        Args:
            image: BGR or grayscale image as numpy array

        Returns:
            OCR blocks, LINE blocks first then WORD blocks, each in reading order
        """
        pass

    @abstractmethod
    def detect_labels(self, image: np.ndarray) -> List[Label]:
        """
        Describe the image surface.

        Args:
            image: BGR image as numpy array

        Returns:
            Labels with confidence in [0, 1]
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the service is properly installed and available.

        Returns:
            True if the service can be used, False otherwise
        """
        pass
