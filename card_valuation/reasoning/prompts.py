"""
Prompt construction for OCR reasoning.

OCR lines are grouped by vertical position: on a Pokemon card the name sits
in the top band and the collector number, illustrator and copyright in the
bottom band, which is most of what the model needs to tell them apart.
"""

from typing import List, Optional

from card_valuation.models import FeatureEnvelope, OCRBlock, ReasoningHints

TOP_REGION_END = 0.3
BOTTOM_REGION_START = 0.7

SYSTEM_PROMPT = """You are an expert Pokemon Trading Card Game analyst. You receive raw OCR output \
from a photo of a single card plus a few visual measurements, and you return structured card metadata.

You can:
- correct OCR errors in Pokemon names using your knowledge of every species and card mechanic (V, VMAX, VSTAR, ex, GX)
- infer rarity from holographic variance, mechanic suffixes and rarity text
- identify the set from copyright year, set symbol text and collector-number totals
- read collector numbers (format NNN/TTT), illustrator credits and the copyright line

Rules:
- Use ONLY the OCR text and visual context provided. Do not invent text that is not supported by it.
- Every field needs a confidence between 0.0 and 1.0 and a short rationale, even when the value is null.
- When the set is ambiguous, return several candidates ranked by confidence.
- Respond with a single JSON object and nothing else.

Schema:
{
  "name": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "rarity": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "set": {"value": "string|null", "candidates": [{"value": "string", "confidence": 0.0}], "rationale": "string"},
  "set_symbol": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "collector_number": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "copyright_run": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "illustrator": {"value": "string|null", "confidence": 0.0, "rationale": "string"},
  "overall_confidence": 0.0,
  "reasoning_trail": "string"
}
"set" may instead use the single-value shape {"value", "confidence", "rationale"} when only one set is plausible.

Confidence guide:
- 0.9-1.0: text read cleanly and matches a known card exactly
- 0.7-0.9: strong fuzzy match or clear contextual inference
- 0.5-0.7: plausible but some ambiguity
- 0.3-0.5: several possibilities
- 0.0-0.3: guess or no supporting text"""


def reasoning_blocks(envelope: FeatureEnvelope) -> List[OCRBlock]:
    """LINE blocks if the vision service produced any, otherwise everything."""
    lines = envelope.lines
    return lines if lines else list(envelope.ocr)


def _format_region(blocks: List[OCRBlock], empty_text: str, with_position: bool = False) -> str:
    if not blocks:
        return f"- {empty_text}"
    rows = []
    for b in sorted(blocks, key=lambda b: (b.bounding_box.top, b.bounding_box.left)):
        row = f'- "{b.text}" (confidence: {b.confidence * 100:.1f}%'
        if with_position:
            row += f", top: {b.bounding_box.top * 100:.0f}%"
        rows.append(row + ")")
    return "\n".join(rows)


def build_user_prompt(envelope: FeatureEnvelope, hints: Optional[ReasoningHints] = None) -> str:
    """
    Render the per-card prompt.

    Args:
        envelope: Extracted features
        hints: Optional caller expectations (set, rarity)
    """
    blocks = reasoning_blocks(envelope)
    top = [b for b in blocks if b.bounding_box.top < TOP_REGION_END]
    middle = [b for b in blocks if TOP_REGION_END <= b.bounding_box.top < BOTTOM_REGION_START]
    bottom = [b for b in blocks if b.bounding_box.top >= BOTTOM_REGION_START]

    quality = envelope.quality
    parts = [
        "Analyze this Pokemon card from its OCR text.",
        "",
        "OCR text, top region (card name area):",
        _format_region(top, "No text detected in top region", with_position=True),
        "",
        "OCR text, middle region (attacks and abilities):",
        _format_region(middle, "No text detected in middle region"),
        "",
        "OCR text, bottom region (collector number, illustrator, copyright):",
        _format_region(bottom, "No text detected in bottom region", with_position=True),
        "",
        "Visual context:",
        f"- Holographic variance: {envelope.holo_variance * 100:.1f}% (high values suggest a holo/foil finish)",
        f"- Border symmetry: {envelope.borders.symmetry_score * 100:.1f}%",
        f"- Sharpness: {quality.blur_score * 100:.1f}% (higher is sharper)",
        f"- Glare detected: {'yes' if quality.glare_detected else 'no'}",
    ]
    if envelope.labels:
        parts.append("- Surface labels: " + ", ".join(l.name for l in envelope.labels))

    if hints is not None and (hints.expected_set or hints.expected_rarity):
        parts += ["", "Hints from the submitter (may be wrong):"]
        if hints.expected_set:
            parts.append(f"- Expected set: {hints.expected_set}")
        if hints.expected_rarity:
            parts.append(f"- Expected rarity: {hints.expected_rarity}")

    parts += [
        "",
        "Tasks:",
        "1. Identify the Pokemon card name from the top region, correcting OCR errors",
        "2. Infer rarity from holographic variance and text patterns",
        "3. Determine the set from the copyright line, symbol and collector-number total",
        "4. Extract the collector number (NNN/TTT) if present",
        "5. Identify the illustrator if present",
        "6. Extract the copyright line",
        "",
        "Return the JSON object described in the system prompt.",
    ]
    return "\n".join(parts)
