"""
card_valuation/tests/conftest.py: Pytest configuration and shared fixtures

Provides:
- Fake capabilities (vision, LLM, catalog, price sources) so no test touches the network
- A fake clock for retry and rate-limit tests
- Synthetic card images built with OpenCV / Pillow
- Logging configuration and custom markers
"""

import io
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np
import pytest
from PIL import Image, ImageDraw

from card_valuation.catalog.pokemontcg import BaseCardCatalog, CatalogCard
from card_valuation.models import (
    BlockType, BorderMetrics, BoundingBox, FeatureEnvelope, FontMetrics, Label, OCRBlock, PriceQuery,
    QualityMetrics, RawComp
)
from card_valuation.ocr.base_ocr import BaseVisionService
from card_valuation.pricing.base_adapter import BasePriceAdapter
from card_valuation.reasoning.llm_client import BaseLLMClient, LLMResponse
from card_valuation.utils.rate_limit import TokenBucket

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVision(BaseVisionService):
    """Returns canned OCR blocks and labels."""

    def __init__(self, blocks: Optional[List[OCRBlock]] = None, labels: Optional[List[Label]] = None,
                 fail_text: bool = False):
        self.blocks = blocks or []
        self.labels = labels or []
        self.fail_text = fail_text
        self.text_calls = 0

    def detect_text(self, image):
        self.text_calls += 1
        if self.fail_text:
            raise RuntimeError("vision backend unavailable")
        return list(self.blocks)

    def detect_labels(self, image):
        return list(self.labels)

    def is_available(self) -> bool:
        return True


class FakeLLM(BaseLLMClient):
    """
    Replays scripted responses in order; the last one repeats.

    Each item is either response text or an exception instance to raise.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def generate(self, system_prompt, user_prompt, max_tokens, temperature):
        self.calls.append({"system": system_prompt, "user": user_prompt,
                           "max_tokens": max_tokens, "temperature": temperature})
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        item = self.responses[index]
        if isinstance(item, BaseException):
            raise item
        return LLMResponse(text=item, input_tokens=120, output_tokens=80, model="fake")


class FakeCatalog(BaseCardCatalog):
    def __init__(self, cards: Optional[List[CatalogCard]] = None, error: Optional[BaseException] = None):
        self.cards = cards or []
        self.error = error
        self.queries: List[str] = []

    def search_by_name(self, name):
        self.queries.append(name)
        if self.error is not None:
            raise self.error
        return list(self.cards)


class FakeAdapter(BasePriceAdapter):
    """Price source returning fixed comps (or raising) and counting calls."""

    def __init__(self, name: str, comps: Optional[List[RawComp]] = None, error: Optional[BaseException] = None,
                 available: bool = True, bucket: Optional[TokenBucket] = None):
        super().__init__(requests_per_minute=600, timeout=1.0, bucket=bucket)
        self.name = name
        self.comps = comps or []
        self.error = error
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        return self.available

    def _fetch_comps_internal(self, query: PriceQuery) -> List[RawComp]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.comps)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    """Minimal stand-in for requests.Session.get"""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_block(text: str, top: float, left: float = 0.1, confidence: float = 0.95,
               block_type: BlockType = BlockType.LINE, width: float = 0.6, height: float = 0.04) -> OCRBlock:
    return OCRBlock(
        text=text,
        confidence=confidence,
        bounding_box=BoundingBox(left=left, top=top, width=width, height=height),
        type=block_type,
    )


def make_envelope(blocks: List[OCRBlock], holo_variance: float = 0.0, **kwargs) -> FeatureEnvelope:
    defaults = dict(
        borders=BorderMetrics(top_ratio=0.8, bottom_ratio=0.8, left_ratio=0.8, right_ratio=0.8, symmetry_score=0.98),
        font_metrics=FontMetrics(kerning=[0.01], alignment=0.9, font_size_variance=0.0001),
        quality=QualityMetrics(blur_score=0.8, glare_detected=False, brightness=0.6),
    )
    defaults.update(kwargs)
    return FeatureEnvelope(ocr=blocks, holo_variance=holo_variance, **defaults)


def field(value, confidence, rationale="read from OCR"):
    return {"value": value, "confidence": confidence, "rationale": rationale}


def charizard_payload(**overrides) -> dict:
    payload = {
        "name": field("Charizard VMAX", 0.95, "Top region text, clean read"),
        "rarity": field("Rare Holo VMAX", 0.9, "VMAX suffix and high holographic variance"),
        "set": {
            "value": "Silver Tempest",
            "candidates": [{"value": "Silver Tempest", "confidence": 0.8},
                           {"value": "Darkness Ablaze", "confidence": 0.1}],
            "rationale": "Printed total 195 and 2022 copyright",
        },
        "set_symbol": field(None, 0.0, "No symbol text"),
        "collector_number": field("018/195", 0.95, "Bottom region"),
        "copyright_run": field("© 2022 Pokémon", 0.9, "Bottom region"),
        "illustrator": field(None, 0.0, "Not visible"),
        "overall_confidence": 0.9,
        "reasoning_trail": "Name from top region; number and copyright from bottom region.",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def temp_dir():
    """
    Function-scoped temporary directory

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path

    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def charizard_blocks():
    """OCR from a Charizard VMAX photo: name on top, copyright and number at the bottom."""
    return [
        make_block("Charizard VMAX", top=0.05, confidence=0.95),
        make_block("© 2022 Pokémon", top=0.90, confidence=0.9),
        make_block("018/195", top=0.93, left=0.75, width=0.15, confidence=0.92),
    ]


@pytest.fixture
def charizard_envelope(charizard_blocks):
    return make_envelope(charizard_blocks, holo_variance=0.85, labels=[Label(name="Shiny", confidence=0.9)])


@pytest.fixture
def charizard_json():
    return json.dumps(charizard_payload())


@pytest.fixture
def charizard_printings():
    """Catalog printings of Charizard VMAX across sets."""
    return [
        CatalogCard(name="Charizard VMAX", number="20", set_name="Darkness Ablaze", set_series="Sword & Shield",
                    set_id="swsh3", printed_total=189, release_date="2020/08/14", rarity="Rare Holo VMAX"),
        CatalogCard(name="Charizard VMAX", number="18", set_name="Silver Tempest", set_series="Sword & Shield",
                    set_id="swsh12", printed_total=195, release_date="2022/11/11", rarity="Rare Holo VMAX"),
        CatalogCard(name="Charizard VMAX", number="74", set_name="Champion's Path", set_series="Sword & Shield",
                    set_id="swsh35", printed_total=73, release_date="2020/09/25", rarity="Rare Secret"),
    ]


@pytest.fixture
def usd_comps():
    return [
        RawComp(source="PokemonTCG", price=price, currency="USD", variant="holofoil")
        for price in (18.0, 20.0, 22.0)
    ]


@pytest.fixture
def sample_card_image():
    """
    Pokemon-card shaped image (63x88 proportions) drawn with Pillow

    Returns:
        PIL Image object
    """
    img = Image.new('RGB', (630, 880), color=(250, 220, 60))
    draw = ImageDraw.Draw(img)

    # Inner frame
    draw.rectangle([25, 25, 605, 855], outline='black', width=3)
    # Name bar
    draw.rectangle([40, 40, 590, 110], fill='white', outline='black')
    draw.text((55, 60), "Charizard VMAX", fill='black')
    # Art window
    draw.rectangle([40, 120, 590, 470], fill=(90, 140, 220), outline='black')
    # Attack text
    for y in range(500, 760, 40):
        draw.line([(60, y), (570, y)], fill='black', width=2)
    # Collector number
    draw.text((480, 820), "018/195", fill='black')
    return img


@pytest.fixture
def sample_card_png_bytes(sample_card_image):
    buffer = io.BytesIO()
    sample_card_image.save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def sample_card_image_file(temp_dir, sample_card_image):
    img_path = temp_dir / "sample_card.png"
    sample_card_image.save(img_path)
    return img_path


@pytest.fixture
def card_on_table_image():
    """
    White card with text stripes lying upright on a dark table

    Returns:
        BGR numpy array (1000x1000) with the card at x=350..650, y=290..710
    """
    img = np.full((1000, 1000, 3), 20, dtype=np.uint8)
    cv2.rectangle(img, (350, 290), (650, 710), (255, 255, 255), -1)
    for y in range(320, 690, 18):
        cv2.line(img, (370, y), (630, y), (0, 0, 0), 3)
    return img


# Pytest hooks

def pytest_configure(config):
    """
    Pytest configuration hook

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (several components wired together)")
    config.addinivalue_line("markers", "slow: Slow tests (> 1 second)")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on naming conventions"""
    for item in items:
        if 'integration' in item.nodeid.lower():
            item.add_marker(pytest.mark.integration)
        if 'slow' in item.nodeid.lower():
            item.add_marker(pytest.mark.slow)
