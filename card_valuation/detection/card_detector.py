"""
card_valuation/detection/card_detector.py: Card boundary detection and cropping
Locates the card in a photo so surface metrics are measured on the card,
not the table it is lying on. Falls back to the full image whenever the
detection looks implausible.
"""

import cv2
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from card_valuation.config import (
    CROP_PADDING_RATIO, EDGE_GRADIENT_THRESHOLD, MAX_CARD_ASPECT, MAX_EDGE_RATIO,
    MIN_CARD_ASPECT, MIN_EDGE_RATIO
)

logger = logging.getLogger(__name__)


# Pokemon cards are 63mm x 88mm (2.5" x 3.5") = aspect ratio ~0.716
EXPECTED_ASPECT_RATIO = 0.716
ASPECT_TOLERANCE = 0.15  # Allow 15% deviation


@dataclass
class CardRegion:
    """Result of boundary detection."""

    image: np.ndarray
    """Cropped (or full) BGR image to analyse."""

    method: str
    """'contour', 'edge_bbox' or 'full_image'."""

    edge_ratio: float
    """Fraction of pixels whose gradient magnitude exceeds the edge threshold."""

    aspect_ratio: float
    """width / height of the returned image."""

    corners: Optional[np.ndarray] = None
    """4x2 corners in source coordinates (TL, TR, BR, BL), None for full image."""

    @property
    def is_cropped(self) -> bool:
        return self.method != 'full_image'


def edge_mask(gray: np.ndarray, threshold: int = EDGE_GRADIENT_THRESHOLD) -> np.ndarray:
    """
    Sobel gradient magnitude thresholded into a boolean edge mask.

    Args:
        gray: Grayscale image
        threshold: Minimum gradient magnitude counted as an edge

    Returns:
        Boolean mask, True on edges
    """
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = cv2.magnitude(gx, gy)
    return magnitude > threshold


def detect_card_region(image: np.ndarray) -> CardRegion:
    """
    Detect the card boundary and crop to it.

    Order of attempts:
    1. Edge density sanity check (too few or too many edges -> full image)
    2. Contour detection with card aspect ratio (perspective-corrected crop)
    3. Bounding box of edge pixels, padded 5%
    4. Full image if the resulting crop has an implausible aspect ratio

    Args:
        image: BGR or grayscale image

    Returns:
        CardRegion describing what will be analysed
    """
    if image is None or image.size == 0:
        raise ValueError("Empty input image")

    if len(image.shape) == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image.copy()

    edges = edge_mask(gray)
    edge_ratio = float(edges.mean())

    if edge_ratio < MIN_EDGE_RATIO or edge_ratio > MAX_EDGE_RATIO:
        logger.debug(f"Edge ratio {edge_ratio:.3f} outside [{MIN_EDGE_RATIO}, {MAX_EDGE_RATIO}], using full image")
        return _full_image(image, edge_ratio)

    # Bilateral filter reduces noise while preserving edges
    filtered = cv2.bilateralFilter(gray, 9, 75, 75)
    corners = _detect_by_contours(filtered)
    if corners is not None:
        cropped = _perspective_warp(image, corners, margin_reduction=-CROP_PADDING_RATIO)
        method = 'contour'
    else:
        bbox = _edge_bounding_box(edges)
        if bbox is None:
            return _full_image(image, edge_ratio)
        x0, y0, x1, y1 = bbox
        cropped = image[y0:y1, x0:x1]
        corners = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float32)
        method = 'edge_bbox'

    h, w = cropped.shape[:2]
    aspect = w / h if h else 0.0
    if not (MIN_CARD_ASPECT <= aspect <= MAX_CARD_ASPECT):
        logger.warning(f"Detected region aspect ratio {aspect:.2f} is not card-like, using full image")
        return _full_image(image, edge_ratio)

    logger.debug(f"Card region via {method}: {w}x{h} (aspect {aspect:.3f}, edge ratio {edge_ratio:.3f})")
    return CardRegion(image=cropped, method=method, edge_ratio=edge_ratio, aspect_ratio=aspect, corners=corners)


def _full_image(image: np.ndarray, edge_ratio: float) -> CardRegion:
    h, w = image.shape[:2]
    return CardRegion(image=image, method='full_image', edge_ratio=edge_ratio, aspect_ratio=w / h)


def _edge_bounding_box(edges: np.ndarray, padding: float = CROP_PADDING_RATIO) -> Optional[Tuple[int, int, int, int]]:
    """
    Bounding box of all edge pixels, padded and clipped to the image.

    Returns:
        (x0, y0, x1, y1) with exclusive x1/y1, or None if there are no edges
    """
    ys, xs = np.nonzero(edges)
    if len(xs) == 0:
        return None

    h, w = edges.shape[:2]
    x0, x1 = int(xs.min()), int(xs.max()) + 1
    y0, y1 = int(ys.min()), int(ys.max()) + 1
    pad_x = int((x1 - x0) * padding)
    pad_y = int((y1 - y0) * padding)
    return max(0, x0 - pad_x), max(0, y0 - pad_y), min(w, x1 + pad_x), min(h, y1 + pad_y)


def _detect_by_contours(gray: np.ndarray) -> Optional[np.ndarray]:
    """
    Detect card using contour detection with rotation-aware minAreaRect.

    Args:
        gray: Grayscale filtered image

    Returns:
        4x2 ordered corner points, or None if no card-shaped contour is found
    """
    edges = cv2.Canny(gray, 50, 150)

    # Connect fragments, fill small gaps, thin back
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (5, 5))
    edges = cv2.dilate(edges, kernel, iterations=1)
    edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel, iterations=2)
    edges = cv2.erode(edges, kernel, iterations=1)

    contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None

    contours = sorted(contours, key=cv2.contourArea, reverse=True)
    img_area = gray.shape[0] * gray.shape[1]

    for contour in contours[:10]:
        # At least 10% of the frame
        if cv2.contourArea(contour) < img_area * 0.1:
            continue

        rect = cv2.minAreaRect(contour)
        _, (rect_w, rect_h), angle = rect
        if rect_w <= 0 or rect_h <= 0:
            continue

        aspect_ratio = min(rect_w, rect_h) / max(rect_w, rect_h)
        if abs(aspect_ratio - EXPECTED_ASPECT_RATIO) / EXPECTED_ASPECT_RATIO < ASPECT_TOLERANCE:
            corners = _order_corners(cv2.boxPoints(rect).astype(np.float32))
            logger.debug(f"Found card with aspect ratio {aspect_ratio:.3f}, angle={angle:.1f}°")
            return corners

        logger.debug(f"Rejected contour with aspect ratio {aspect_ratio:.3f} "
                     f"(expected {EXPECTED_ASPECT_RATIO:.3f})")

    return None


def _order_corners(corners: np.ndarray) -> np.ndarray:
    """
    Order corners as: top-left, top-right, bottom-right, bottom-left

    Args:
        corners: 4x2 array of corner points

    Returns:
        Ordered 4x2 array
    """
    center = corners.mean(axis=0)

    # Sort by angle from center, then rotate so top-left comes first
    angles = np.arctan2(corners[:, 1] - center[1], corners[:, 0] - center[0])
    corners = corners[np.argsort(angles)]

    sums = corners[:, 0] + corners[:, 1]
    return np.roll(corners, -int(np.argmin(sums)), axis=0)


def _perspective_warp(image: np.ndarray, corners: np.ndarray, margin_reduction: float = -0.05) -> np.ndarray:
    """
    Warp the quadrilateral to an upright rectangle at native resolution.

    Args:
        image: Input image
        corners: 4 corner points (ordered: top-left, top-right, bottom-right, bottom-left)
        margin_reduction: Negative expands outward from the detected boundary,
                          positive contracts inward

    Returns:
        Warped image, portrait orientation
    """
    center = corners.mean(axis=0)
    adjusted = corners - (corners - center) * margin_reduction

    h, w = image.shape[:2]
    adjusted[:, 0] = np.clip(adjusted[:, 0], 0, w - 1)
    adjusted[:, 1] = np.clip(adjusted[:, 1], 0, h - 1)

    width = int(round(max(np.linalg.norm(adjusted[1] - adjusted[0]), np.linalg.norm(adjusted[2] - adjusted[3]))))
    height = int(round(max(np.linalg.norm(adjusted[3] - adjusted[0]), np.linalg.norm(adjusted[2] - adjusted[1]))))

    if width > height:
        # Card lies sideways: rotate corner order so the warp comes out portrait
        adjusted = np.roll(adjusted, 1, axis=0)
        width, height = height, width

    dst = np.array([
        [0, 0],
        [width - 1, 0],
        [width - 1, height - 1],
        [0, height - 1]
    ], dtype=np.float32)

    M = cv2.getPerspectiveTransform(adjusted.astype(np.float32), dst)
    return cv2.warpPerspective(image, M, (width, height))
