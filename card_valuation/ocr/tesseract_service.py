"""
Tesseract vision service implementation.

Uses pytesseract image_to_data to produce WORD blocks with boxes and
assembles LINE blocks from Tesseract's block/paragraph/line ids. Surface
labels come from pixel statistics (see label_detector).
"""

import cv2
import numpy as np
import logging
import platform
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from card_valuation.config import OCR_LANGUAGE, OCR_PSM_MODE
from card_valuation.models import BlockType, BoundingBox, Label, OCRBlock
from card_valuation.ocr.base_ocr import BaseVisionService
from card_valuation.ocr.label_detector import detect_surface_labels

logger = logging.getLogger(__name__)

# Lazy import pytesseract to avoid import errors if not installed
_pytesseract = None

# Common Tesseract install locations on Windows
WINDOWS_TESSERACT_PATHS = [
    r"C:\Program Files\Tesseract-OCR\tesseract.exe",
    r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
    r"C:\ProgramData\chocolatey\bin\tesseract.exe",
]

# Small photos are upscaled before OCR; card text is tiny at phone resolution
MIN_OCR_HEIGHT = 1000


def _find_tesseract_windows() -> Optional[str]:
    """Find Tesseract executable on Windows."""
    for path in WINDOWS_TESSERACT_PATHS:
        if Path(path).exists():
            logger.info(f"Found Tesseract at: {path}")
            return path
    return None


def _get_pytesseract():
    """Lazy load pytesseract module and configure path if needed."""
    global _pytesseract
    if _pytesseract is None:
        try:
            import pytesseract

            # On Windows, auto-configure Tesseract path if not in PATH
            if platform.system() == "Windows":
                tesseract_path = _find_tesseract_windows()
                if tesseract_path:
                    pytesseract.pytesseract.tesseract_cmd = tesseract_path
                    logger.info(f"Configured pytesseract to use: {tesseract_path}")

            _pytesseract = pytesseract
        except ImportError:
            raise ImportError(
                "pytesseract is required for OCR. Install with: pip install pytesseract\n"
                "Also ensure Tesseract is installed on your system:\n"
                "  Linux: apt-get install tesseract-ocr\n"
                "  macOS: brew install tesseract"
            )
    return _pytesseract


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _normalized_box(left: float, top: float, width: float, height: float, img_w: int, img_h: int) -> BoundingBox:
    nl = _clamp(left / img_w)
    nt = _clamp(top / img_h)
    return BoundingBox(
        left=nl,
        top=nt,
        width=_clamp(min(width / img_w, 1.0 - nl)),
        height=_clamp(min(height / img_h, 1.0 - nt)),
    )


def blocks_from_tesseract_data(data: Dict[str, list], img_w: int, img_h: int) -> List[OCRBlock]:
    """
    Convert pytesseract image_to_data output into OCR blocks.

    Args:
        data: Output of image_to_data(..., output_type=Output.DICT)
        img_w, img_h: Dimensions of the image OCR ran on

    Returns:
        LINE blocks (in reading order) followed by WORD blocks
    """
    words: List[OCRBlock] = []
    lines: Dict[Tuple[int, int, int], List[int]] = {}

    for i, raw_text in enumerate(data.get('text', [])):
        text = (raw_text or '').strip()
        if not text:
            continue
        conf = float(data['conf'][i])
        if conf < 0:
            continue

        words.append(OCRBlock(
            text=text,
            confidence=_clamp(conf / 100.0),
            bounding_box=_normalized_box(
                data['left'][i], data['top'][i], data['width'][i], data['height'][i], img_w, img_h
            ),
            type=BlockType.WORD,
        ))
        key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
        lines.setdefault(key, []).append(len(words) - 1)

    line_blocks: List[OCRBlock] = []
    for key in sorted(lines):
        members = [words[idx] for idx in lines[key]]
        members.sort(key=lambda b: b.bounding_box.left)
        left = min(b.bounding_box.left for b in members)
        top = min(b.bounding_box.top for b in members)
        right = max(b.bounding_box.right for b in members)
        bottom = max(b.bounding_box.top + b.bounding_box.height for b in members)
        line_blocks.append(OCRBlock(
            text=' '.join(b.text for b in members),
            confidence=sum(b.confidence for b in members) / len(members),
            bounding_box=BoundingBox(
                left=left, top=top, width=_clamp(right - left), height=_clamp(bottom - top)
            ),
            type=BlockType.LINE,
        ))

    line_blocks.sort(key=lambda b: (round(b.bounding_box.top, 2), b.bounding_box.left))
    return line_blocks + words


class TesseractVisionService(BaseVisionService):
    """
    Tesseract-based OCR plus heuristic surface labels.

    Usage:
        vision = TesseractVisionService()
        blocks = vision.detect_text(card_image)
        labels = vision.detect_labels(card_image)
    """

    # Valid Tesseract PSM modes (0-13)
    VALID_PSM_MODES = range(0, 14)

    def __init__(
        self,
        tesseract_cmd: Optional[str] = None,
        psm: int = OCR_PSM_MODE,
        lang: str = OCR_LANGUAGE
    ):
        """
        Initialize the Tesseract vision service.

        Args:
            tesseract_cmd: Optional path to tesseract executable.
                          If not provided, uses system PATH.
            psm: Page segmentation mode (default 11 = sparse text)
            lang: Tesseract language code
        """
        if psm not in self.VALID_PSM_MODES:
            raise ValueError(f"Invalid PSM mode: {psm}. Must be 0-13.")
        self.psm = psm
        self.lang = lang

        if tesseract_cmd:
            pytesseract = _get_pytesseract()
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        """Check if Tesseract is properly installed."""
        try:
            pytesseract = _get_pytesseract()
            version = pytesseract.get_tesseract_version()
            logger.info(f"Tesseract version: {version}")
            return True
        except Exception as e:
            logger.warning(f"Tesseract not available: {e}")
            return False

    def _to_grayscale(self, image: np.ndarray) -> np.ndarray:
        """Convert image to grayscale."""
        if len(image.shape) == 3:
            if image.shape[2] == 4:
                return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
            elif image.shape[2] == 3:
                return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return image.copy()

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        """Grayscale, upscale small photos, CLAHE for uneven lighting."""
        gray = self._to_grayscale(image)
        h, w = gray.shape[:2]
        if h < MIN_OCR_HEIGHT:
            scale = MIN_OCR_HEIGHT / h
            gray = cv2.resize(gray, (int(w * scale), MIN_OCR_HEIGHT), interpolation=cv2.INTER_CUBIC)
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        return clahe.apply(gray)

    def detect_text(self, image: np.ndarray) -> List[OCRBlock]:
        """
        Run Tesseract over the whole card.

        Args:
            image: BGR, BGRA or grayscale image

        Returns:
            LINE then WORD blocks; empty list if Tesseract fails
        """
        if image is None or image.size == 0:
            logger.warning("Empty image provided to OCR")
            return []

        try:
            pytesseract = _get_pytesseract()
            prepared = self._prepare(image)
            data = pytesseract.image_to_data(
                prepared,
                lang=self.lang,
                config=f'--psm {self.psm} --oem 3',
                output_type=pytesseract.Output.DICT
            )
            h, w = prepared.shape[:2]
            blocks = blocks_from_tesseract_data(data, w, h)
            logger.debug(f"Tesseract found {sum(1 for b in blocks if b.type == BlockType.LINE)} lines")
            return blocks

        except ImportError:
            raise
        except Exception as e:
            logger.error(f"Tesseract failed: {e}")
            return []

    def detect_labels(self, image: np.ndarray) -> List[Label]:
        return detect_surface_labels(image)
