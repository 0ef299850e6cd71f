"""
Vision capability for card photos.

Provides:
- BaseVisionService: Abstract interface for OCR + label detection
- TesseractVisionService: Tesseract OCR with heuristic surface labels
- detect_surface_labels: Pixel-statistics holo/foil labels
"""

from card_valuation.ocr.base_ocr import BaseVisionService
from card_valuation.ocr.label_detector import detect_surface_labels
from card_valuation.ocr.tesseract_service import TesseractVisionService, blocks_from_tesseract_data

__all__ = [
    'BaseVisionService',
    'TesseractVisionService',
    'blocks_from_tesseract_data',
    'detect_surface_labels',
]
