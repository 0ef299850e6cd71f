"""
card_valuation/models.py: Pydantic data model shared by every pipeline stage

OCR blocks and feature envelopes are frozen once produced. CardMetadata is the
schema the LLM output is validated against, so it stays strict: every field is
required to carry a confidence and a rationale even when the value is null.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Feature extraction
# ---------------------------------------------------------------------------

class BlockType(str, Enum):
    """Granularity of an OCR block"""
    LINE = "LINE"
    WORD = "WORD"


class BoundingBox(BaseModel):
    """Bounding box normalized to [0, 1] of the analysed image."""
    model_config = ConfigDict(frozen=True)

    left: float = Field(..., ge=0.0, le=1.0)
    top: float = Field(..., ge=0.0, le=1.0)
    width: float = Field(..., ge=0.0, le=1.0)
    height: float = Field(..., ge=0.0, le=1.0)

    @property
    def right(self) -> float:
        return self.left + self.width


class OCRBlock(BaseModel):
    """Single detected text element."""
    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    bounding_box: BoundingBox
    type: BlockType


class Label(BaseModel):
    """Scene label from the vision capability (e.g. 'Shiny', 'Card')."""
    model_config = ConfigDict(frozen=True)

    name: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class BorderMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    top_ratio: float = 0.0
    bottom_ratio: float = 0.0
    left_ratio: float = 0.0
    right_ratio: float = 0.0
    symmetry_score: float = 0.0


class FontMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    kerning: List[float] = Field(default_factory=list)
    alignment: float = 0.0
    font_size_variance: float = 0.0


class QualityMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    blur_score: float = 0.0
    glare_detected: bool = False
    brightness: float = 0.0


class ImageMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = 0
    height: int = 0
    format: str = "unknown"
    size_bytes: int = 0


class FeatureEnvelope(BaseModel):
    """Everything the reasoning stage gets to see about one image."""
    model_config = ConfigDict(frozen=True)

    ocr: List[OCRBlock] = Field(default_factory=list)
    labels: List[Label] = Field(default_factory=list)
    borders: BorderMetrics = Field(default_factory=BorderMetrics)
    holo_variance: float = Field(0.0, ge=0.0, le=1.0)
    font_metrics: FontMetrics = Field(default_factory=FontMetrics)
    quality: QualityMetrics = Field(default_factory=QualityMetrics)
    image_meta: ImageMeta = Field(default_factory=ImageMeta)

    @property
    def lines(self) -> List[OCRBlock]:
        return [b for b in self.ocr if b.type == BlockType.LINE]

    @property
    def words(self) -> List[OCRBlock]:
        return [b for b in self.ocr if b.type == BlockType.WORD]


# ---------------------------------------------------------------------------
# Reasoning
# ---------------------------------------------------------------------------

class FieldResult(BaseModel):
    """Single-valued extracted field."""

    value: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str


class Candidate(BaseModel):
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class MultiCandidateResult(BaseModel):
    """Field with structurally ambiguous answers; candidates sorted best first."""

    value: Optional[str] = None
    candidates: List[Candidate] = Field(default_factory=list)
    rationale: str

    @field_validator("candidates")
    @classmethod
    def _sort_candidates(cls, candidates: List[Candidate]) -> List[Candidate]:
        return sorted(candidates, key=lambda c: c.confidence, reverse=True)

    @property
    def confidence(self) -> float:
        return self.candidates[0].confidence if self.candidates else 0.0


def _set_field_shape(value) -> str:
    if isinstance(value, dict):
        return "multi" if "candidates" in value else "single"
    return "multi" if isinstance(value, MultiCandidateResult) else "single"


SetField = Annotated[
    Union[
        Annotated[FieldResult, Tag("single")],
        Annotated[MultiCandidateResult, Tag("multi")],
    ],
    Discriminator(_set_field_shape),
]


def best_value(field: Union[FieldResult, MultiCandidateResult]) -> Optional[str]:
    """Resolve either field shape to its single best value."""
    if isinstance(field, MultiCandidateResult):
        if field.value:
            return field.value
        return field.candidates[0].value if field.candidates else None
    return field.value


def empty_field(rationale: str) -> FieldResult:
    return FieldResult(value=None, confidence=0.0, rationale=rationale)


METADATA_FIELDS = (
    "name", "rarity", "set", "set_symbol",
    "collector_number", "copyright_run", "illustrator",
)


class CardMetadata(BaseModel):
    """Structured card identity with per-field confidence."""

    name: FieldResult
    rarity: FieldResult
    set: SetField
    set_symbol: FieldResult
    collector_number: FieldResult
    copyright_run: FieldResult
    illustrator: FieldResult
    overall_confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning_trail: str = Field(..., min_length=1)
    verified_by_ai: bool = False

    @property
    def card_name(self) -> Optional[str]:
        return self.name.value

    @property
    def set_name(self) -> Optional[str]:
        return best_value(self.set)

    @property
    def set_confidence(self) -> float:
        return self.set.confidence


class ReasoningHints(BaseModel):
    """Optional caller-supplied expectations passed through to the prompt."""

    expected_set: Optional[str] = None
    expected_rarity: Optional[str] = None


# ---------------------------------------------------------------------------
# Set resolution
# ---------------------------------------------------------------------------

class SetMatch(BaseModel):
    set_name: str
    set_series: Optional[str] = None
    set_id: Optional[str] = None
    collector_number: Optional[str] = None
    rarity: Optional[str] = None
    release_date: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_reason: str


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

class PriceQuery(BaseModel):
    card_name: str
    set_name: Optional[str] = None
    number: Optional[str] = None
    rarity: Optional[str] = None
    condition: Optional[str] = None
    window_days: int = 14


class RawComp(BaseModel):
    """One comparable price point from a single source."""

    source: str
    price: float
    currency: str = "USD"
    sold_date: datetime = Field(default_factory=utcnow)
    condition: str = "Near Mint"
    listing_url: Optional[str] = None
    variant: Optional[str] = None


class Valuation(BaseModel):
    value_low: float = 0.0
    value_median: float = 0.0
    value_high: float = 0.0
    comps_count: int = 0
    sources: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    currency: str = "USD"


class Trend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class ValuationSummary(BaseModel):
    """Narrative read of a Valuation: one fair value, a trend and advice."""

    summary: str
    fair_value: float = Field(ge=0.0)
    trend: Trend = Trend.STABLE
    recommendation: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    verified_by_ai: bool = False


class CacheEntry(BaseModel):
    key: str
    payload: List[RawComp]
    created_at: datetime
    expires_at: datetime


# ---------------------------------------------------------------------------
# Authenticity
# ---------------------------------------------------------------------------

class AuthenticitySignals(BaseModel):
    text_match_confidence: float = 0.0
    holo_pattern_confidence: float = 0.0
    border_consistency: float = 0.0
    font_validation: float = 0.0
    era_consistency: float = 0.0


class AuthenticityResult(BaseModel):
    authenticity_score: float = Field(..., ge=0.0, le=1.0)
    fake_detected: bool
    signals: AuthenticitySignals
    rationale: str


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class WorkflowStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class Stage(str, Enum):
    EXTRACTING = "EXTRACTING"
    REASONING = "REASONING"
    RESOLVING_SET = "RESOLVING_SET"
    PRICING = "PRICING"
    VERIFYING_AUTHENTICITY = "VERIFYING_AUTHENTICITY"
    AGGREGATING = "AGGREGATING"


class StageStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class StageResult(BaseModel):
    stage: Stage
    status: StageStatus
    output: Optional[dict] = None
    error: Optional[str] = None
    attempts: int = 1
    completed_at: datetime = Field(default_factory=utcnow)


class IdentifyRequest(BaseModel):
    image_ref: str
    hints: Optional[ReasoningHints] = None


class WorkflowExecution(BaseModel):
    id: str
    input: IdentifyRequest
    stage_results: Dict[Stage, StageResult] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def completed(self, stage: Stage) -> Optional[StageResult]:
        """Return the stored result for a stage that already succeeded."""
        result = self.stage_results.get(stage)
        if result is not None and result.status == StageStatus.SUCCEEDED:
            return result
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.RUNNING


class IdentificationResult(BaseModel):
    execution_id: str
    status: WorkflowStatus
    card_metadata: Optional[CardMetadata] = None
    set_match: Optional[SetMatch] = None
    valuation: Optional[Valuation] = None
    valuation_summary: Optional[ValuationSummary] = None
    authenticity: Optional[AuthenticityResult] = None
    errors: Dict[str, str] = Field(default_factory=dict)
