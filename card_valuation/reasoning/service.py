"""
card_valuation/reasoning/service.py: FeatureEnvelope -> CardMetadata

Sends OCR text and visual context to the LLM with a strict JSON schema,
validates the answer, sanity-checks it against the knowledge base and falls
back to a heuristic reading when every attempt fails.
"""

import json
import logging
import random
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import ValidationError

from card_valuation.config import (
    FALLBACK_NAME_DISCOUNT, FALLBACK_OVERALL_DISCOUNT, FALLBACK_TOP_REGION, LLM_MAX_ATTEMPTS,
    LLM_MAX_TOKENS, LLM_RETRY_BASE_DELAY, LLM_RETRY_MAX_DELAY, LLM_TEMPERATURE, RETRY_JITTER_RATIO
)
from card_valuation.errors import ResponseValidationError, RetryExhaustedError
from card_valuation.models import (
    Candidate, CardMetadata, FeatureEnvelope, FieldResult, MultiCandidateResult, ReasoningHints,
    empty_field
)
from card_valuation.reasoning.llm_client import BaseLLMClient, LLMResponse
from card_valuation.reasoning.prompts import SYSTEM_PROMPT, build_user_prompt, reasoning_blocks
from card_valuation.utils import pokemon_knowledge as kb
from card_valuation.utils.fuzzy_matching import FuzzyMatch, find_best_match, token_similarity
from card_valuation.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

NO_TEXT_RATIONALE = "No OCR text detected in image."

# Weighted average for overall_confidence; identity fields count more
FIELD_WEIGHTS = {
    "name": 3.0,
    "set": 2.0,
    "rarity": 2.0,
    "set_symbol": 1.0,
    "collector_number": 1.0,
    "copyright_run": 1.0,
    "illustrator": 1.0,
}

NAME_CORRECTION_THRESHOLD = 0.85

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_BARE_JSON = re.compile(r"\{[\s\S]*\}")


@dataclass
class TokenUsage:
    """Running token totals for cost accounting."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, response: LLMResponse) -> None:
        with self._lock:
            self.calls += 1
            self.input_tokens += response.input_tokens
            self.output_tokens += response.output_tokens


def load_known_names(path: Optional[Union[str, Path]]) -> List[str]:
    """Read a newline-separated card-name dictionary; missing path -> empty list."""
    if not path:
        return []
    path = Path(path)
    if not path.is_file():
        logger.warning(f"Known-name dictionary not found: {path}")
        return []
    names = [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
    logger.info(f"Loaded {len(names)} known card names from {path}")
    return names


def extract_json(text: str) -> Any:
    """
    Decode the JSON object in an LLM reply.

    Accepts a ```json fenced block or the outermost {...} in the text.

    Raises:
        ResponseValidationError: empty reply, no JSON, or invalid JSON
    """
    if not text or not text.strip():
        raise ResponseValidationError("Empty response", raw_text=text or "")

    match = _FENCED_JSON.search(text) or _BARE_JSON.search(text)
    if not match:
        raise ResponseValidationError("No JSON found in response", raw_text=text)
    json_text = match.group(1) if match.re is _FENCED_JSON else match.group(0)

    try:
        return json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ResponseValidationError(f"Invalid JSON: {e}", raw_text=text) from e


def parse_metadata(text: str) -> CardMetadata:
    """
    Extract and validate the card metadata in an LLM reply.

    Raises:
        ResponseValidationError: no JSON, invalid JSON, or schema mismatch
    """
    payload = extract_json(text)
    try:
        return CardMetadata.model_validate(payload)
    except ValidationError as e:
        raise ResponseValidationError(f"Schema validation failed: {e.error_count()} error(s)", raw_text=text) from e


def correct_name(value: str, known_names: Sequence[str]) -> Optional[FuzzyMatch]:
    """Closest known name by edit distance, then word-order-insensitive ("VMAX Charizard")."""
    match = find_best_match(value, known_names, threshold=NAME_CORRECTION_THRESHOLD)
    if match is not None:
        return match

    best = max(known_names, key=lambda n: token_similarity(value, n), default=None)
    if best is not None:
        score = token_similarity(value, best)
        if score >= NAME_CORRECTION_THRESHOLD:
            return FuzzyMatch(match=best, confidence=score)
    return None


def weighted_confidence(metadata: CardMetadata) -> float:
    total = sum(FIELD_WEIGHTS.values())
    score = sum(getattr(metadata, name).confidence * weight for name, weight in FIELD_WEIGHTS.items())
    return round(score / total, 4)


def empty_metadata(rationale: str = NO_TEXT_RATIONALE) -> CardMetadata:
    """All-null metadata for an image with no readable text."""
    return CardMetadata(
        name=empty_field(rationale),
        rarity=empty_field(rationale),
        set=empty_field(rationale),
        set_symbol=empty_field(rationale),
        collector_number=empty_field(rationale),
        copyright_run=empty_field(rationale),
        illustrator=empty_field(rationale),
        overall_confidence=0.0,
        reasoning_trail="No OCR text detected; reasoning skipped. Manual review recommended.",
        verified_by_ai=False,
    )


def fallback_metadata(
    envelope: FeatureEnvelope,
    name_discount: float = FALLBACK_NAME_DISCOUNT,
    overall_discount: float = FALLBACK_OVERALL_DISCOUNT,
    reason: str = "AI reasoning unavailable"
) -> CardMetadata:
    """
    Heuristic metadata when the LLM path is exhausted.

    The topmost block in the name band becomes the name with a discounted
    confidence; every other field is null with zero confidence.
    """
    blocks = [b for b in reasoning_blocks(envelope) if b.bounding_box.top < FALLBACK_TOP_REGION]
    blocks.sort(key=lambda b: b.bounding_box.top)
    top_block = blocks[0] if blocks else None

    name_confidence = round(top_block.confidence * name_discount, 4) if top_block else 0.0
    if top_block:
        name = FieldResult(
            value=top_block.text,
            confidence=name_confidence,
            rationale="Fallback: using topmost OCR text as card name. AI reasoning unavailable.",
        )
    else:
        name = empty_field("Fallback: no text in the name region and AI reasoning unavailable.")

    def unavailable(what: str) -> FieldResult:
        return empty_field(f"Fallback: unable to determine {what} without AI reasoning.")

    return CardMetadata(
        name=name,
        rarity=unavailable("rarity"),
        set=unavailable("set"),
        set_symbol=unavailable("set symbol"),
        collector_number=unavailable("collector number"),
        copyright_run=unavailable("copyright text"),
        illustrator=unavailable("illustrator"),
        overall_confidence=max(0.0, round(name_confidence * overall_discount, 4)),
        reasoning_trail=f"Fallback mode: {reason}. Using basic OCR extraction only. Manual review recommended.",
        verified_by_ai=False,
    )


class OcrReasoningService:
    """
    LLM-backed OCR interpretation with retry and fallback.

    Usage:
        service = OcrReasoningService(OpenAIInferenceClient())
        metadata = service.interpret(envelope, ReasoningHints(expected_set="Brilliant Stars"))
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        retry_policy: Optional[RetryPolicy] = None,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
        known_names: Optional[Sequence[str]] = None,
        name_discount: float = FALLBACK_NAME_DISCOUNT,
        overall_discount: float = FALLBACK_OVERALL_DISCOUNT,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        self.llm = llm
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=LLM_MAX_ATTEMPTS,
            base_delay=LLM_RETRY_BASE_DELAY,
            factor=2.0,
            max_delay=LLM_RETRY_MAX_DELAY,
            jitter_ratio=RETRY_JITTER_RATIO,
        )
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.known_names = list(known_names or [])
        self.name_discount = name_discount
        self.overall_discount = overall_discount
        self.usage = TokenUsage()
        self._sleep = sleep
        self._rng = rng

    def interpret(self, envelope: FeatureEnvelope, hints: Optional[ReasoningHints] = None) -> CardMetadata:
        """
        Produce CardMetadata for an envelope. Never raises for upstream problems.

        Args:
            envelope: Extracted features
            hints: Optional expected set/rarity

        Returns:
            Validated LLM metadata, or fallback metadata after retries are spent
        """
        logger.info(f"OCR reasoning invoked: {len(envelope.ocr)} blocks, holo={envelope.holo_variance:.2f}")

        if not envelope.ocr:
            logger.warning("No OCR blocks; skipping LLM call")
            return empty_metadata()

        user_prompt = build_user_prompt(envelope, hints)

        def attempt() -> CardMetadata:
            return self._invoke(user_prompt, envelope)

        try:
            return self.retry_policy.call(attempt, sleep=self._sleep, rng=self._rng, label="OCR reasoning")
        except RetryExhaustedError as e:
            logger.warning(f"OCR reasoning exhausted retries, using fallback: {e.last_error}")
            return fallback_metadata(
                envelope,
                name_discount=self.name_discount,
                overall_discount=self.overall_discount,
                reason=f"LLM reasoning failed after {e.attempts} attempt(s)",
            )

    def _invoke(self, user_prompt: str, envelope: FeatureEnvelope) -> CardMetadata:
        started = time.monotonic()
        response = self.llm.generate(SYSTEM_PROMPT, user_prompt, self.max_tokens, self.temperature)
        self.usage.record(response)
        logger.info(
            f"LLM response in {time.monotonic() - started:.2f}s "
            f"(input tokens={response.input_tokens}, output tokens={response.output_tokens})"
        )

        metadata = parse_metadata(response.text)
        metadata = self.sanity_check(metadata, envelope)
        return metadata.model_copy(update={
            "overall_confidence": weighted_confidence(metadata),
            "verified_by_ai": True,
        })

    # ------------------------------------------------------------------
    # Knowledge-base sanity pass
    # ------------------------------------------------------------------

    def sanity_check(self, metadata: CardMetadata, envelope: FeatureEnvelope) -> CardMetadata:
        """
        Canonicalize validated metadata against reference data.

        - set names and candidates mapped to known set names
        - collector number normalized to X/Y
        - name corrected against the known-name dictionary
        - copyright era noted in the reasoning trail
        """
        notes: List[str] = []
        updates = {}

        set_field = self._canonical_set_field(metadata.set, notes)
        if set_field is not metadata.set:
            updates["set"] = set_field

        number = metadata.collector_number
        if number.value:
            normalized = kb.extract_collector_number(number.value)
            if normalized and normalized != number.value:
                notes.append(f"collector number normalized '{number.value}' -> '{normalized}'")
                updates["collector_number"] = number.model_copy(update={"value": normalized})

        name = metadata.name
        if name.value and self.known_names:
            match = correct_name(name.value, self.known_names)
            if match and match.match != name.value:
                notes.append(f"name corrected '{name.value}' -> '{match.match}' ({match.confidence:.2f})")
                updates["name"] = name.model_copy(update={
                    "value": match.match,
                    "rationale": f"{name.rationale} Corrected against known names.",
                })

        copyright_text = metadata.copyright_run.value or " ".join(b.text for b in envelope.lines)
        era = kb.determine_era(copyright_text)
        if era:
            notes.append(f"copyright era: {era}")
            set_name = (updates.get("set") or metadata.set)
            set_value = set_name.value if isinstance(set_name, FieldResult) else (
                set_name.candidates[0].value if set_name.candidates else set_name.value
            )
            if set_value and kb.era_matches_set(era, set_value) is False:
                notes.append(f"set '{set_value}' does not fit {era}")

        if notes:
            updates["reasoning_trail"] = f"{metadata.reasoning_trail} [Checks: {'; '.join(notes)}]"
            logger.debug(f"Sanity check notes: {notes}")

        return metadata.model_copy(update=updates) if updates else metadata

    def _canonical_set_field(
        self,
        set_field: Union[FieldResult, MultiCandidateResult],
        notes: List[str]
    ) -> Union[FieldResult, MultiCandidateResult]:
        if isinstance(set_field, MultiCandidateResult):
            merged = {}
            for candidate in set_field.candidates:
                canonical = self._canonical_set_name(candidate.value, notes)
                merged[canonical] = max(merged.get(canonical, 0.0), candidate.confidence)
            candidates = [Candidate(value=v, confidence=c) for v, c in merged.items()]
            value = self._canonical_set_name(set_field.value, notes) if set_field.value else None
            if [c.value for c in candidates] == [c.value for c in set_field.candidates] and value == set_field.value:
                return set_field
            return MultiCandidateResult(value=value, candidates=candidates, rationale=set_field.rationale)

        if set_field.value:
            canonical = self._canonical_set_name(set_field.value, notes)
            if canonical != set_field.value:
                return set_field.model_copy(update={"value": canonical})
        return set_field

    @staticmethod
    def _canonical_set_name(value: str, notes: List[str]) -> str:
        found = kb.find_set_by_name(value)
        if found is None:
            return value
        canonical, _ = found
        if canonical != value:
            notes.append(f"set '{value}' -> '{canonical}'")
        return canonical
