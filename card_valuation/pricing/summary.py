"""
card_valuation/pricing/summary.py: Valuation -> ValuationSummary

Asks the LLM to turn the aggregated comp statistics into a single fair value,
a market trend and a short recommendation. The LLM never sees individual
listings, only the numbers the orchestrator already computed, so its fair
value is clamped to the observed low/high range.
"""

import logging
import random
import time
from typing import Callable, Optional

from pydantic import ValidationError

from card_valuation.config import (
    LLM_MAX_ATTEMPTS, LLM_RETRY_BASE_DELAY, LLM_RETRY_MAX_DELAY, LLM_TEMPERATURE, RETRY_JITTER_RATIO,
    SUMMARY_MAX_TOKENS
)
from card_valuation.errors import ResponseValidationError, RetryExhaustedError
from card_valuation.models import PriceQuery, Trend, Valuation, ValuationSummary
from card_valuation.reasoning.llm_client import BaseLLMClient
from card_valuation.reasoning.service import TokenUsage, extract_json
from card_valuation.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """You are a Pokemon Trading Card Game market analyst. You receive aggregated \
sold-price statistics for one card and write a short valuation for a collector.

Rules:
- Base the fair value on the statistics provided. It must lie between the low and high values.
- trend is one of "rising", "falling" or "stable". Use "stable" unless the spread clearly suggests movement.
- Keep summary and recommendation to one or two sentences each.
- Respond with a single JSON object and nothing else.

Schema:
{
  "summary": "string",
  "fair_value": 0.0,
  "trend": "rising|falling|stable",
  "recommendation": "string",
  "confidence": 0.0
}"""


def build_summary_prompt(query: PriceQuery, valuation: Valuation) -> str:
    lines = [
        f"Card: {query.card_name}",
        f"Set: {query.set_name or 'unknown'}",
        f"Collector number: {query.number or 'unknown'}",
        f"Rarity: {query.rarity or 'unknown'}",
        f"Condition: {query.condition or 'unknown'}",
        "",
        f"Sold prices over the last {query.window_days} days ({valuation.currency}):",
        f"- low: {valuation.value_low:.2f}",
        f"- median: {valuation.value_median:.2f}",
        f"- high: {valuation.value_high:.2f}",
        f"- comparable sales: {valuation.comps_count}",
        f"- sources: {', '.join(valuation.sources) or 'none'}",
        f"- data confidence: {valuation.confidence:.2f}",
    ]
    return "\n".join(lines)


def insufficient_data_summary() -> ValuationSummary:
    return ValuationSummary(
        summary="Insufficient price data to value this card.",
        fair_value=0.0,
        trend=Trend.STABLE,
        recommendation="Check recent sold listings manually.",
        confidence=0.0,
        verified_by_ai=False,
    )


def fallback_summary(valuation: Valuation, reason: str = "AI summary unavailable") -> ValuationSummary:
    """Median-based summary used when the LLM path is exhausted."""
    return ValuationSummary(
        summary=(f"Fair value taken as the median of {valuation.comps_count} comparable sale(s) "
                 f"from {', '.join(valuation.sources)}. {reason}."),
        fair_value=valuation.value_median,
        trend=Trend.STABLE,
        recommendation="Manual review recommended.",
        confidence=valuation.confidence,
        verified_by_ai=False,
    )


def parse_summary(text: str, valuation: Valuation) -> ValuationSummary:
    """
    Validate an LLM summary against the valuation it describes.

    The trend is matched case-insensitively, the fair value is clamped to
    [value_low, value_high] and the confidence is capped at the valuation's.

    Raises:
        ResponseValidationError: no JSON, invalid JSON, or schema mismatch
    """
    payload = extract_json(text)
    if not isinstance(payload, dict):
        raise ResponseValidationError("Summary is not a JSON object", raw_text=text)
    if isinstance(payload.get("trend"), str):
        payload["trend"] = payload["trend"].strip().lower()

    try:
        summary = ValuationSummary.model_validate({**payload, "verified_by_ai": True})
    except ValidationError as e:
        raise ResponseValidationError(f"Summary validation failed: {e.error_count()} error(s)", raw_text=text) from e

    fair_value = min(max(summary.fair_value, valuation.value_low), valuation.value_high)
    if fair_value != summary.fair_value:
        logger.info(f"Clamped LLM fair value {summary.fair_value:.2f} to {fair_value:.2f}")
    return summary.model_copy(update={
        "fair_value": round(fair_value, 2),
        "confidence": min(summary.confidence, valuation.confidence),
    })


class ValuationSummarizer:
    """
    LLM valuation narrative with retry and a median fallback.

    Usage:
        summarizer = ValuationSummarizer(OpenAIInferenceClient())
        summary = summarizer.summarize(query, valuation)
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        retry_policy: Optional[RetryPolicy] = None,
        max_tokens: int = SUMMARY_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
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
        self.usage = TokenUsage()
        self._sleep = sleep
        self._rng = rng

    def summarize(self, query: PriceQuery, valuation: Valuation) -> ValuationSummary:
        """
        Summarize a valuation. Never raises for upstream problems.

        A valuation without comps is not sent to the LLM.
        """
        if valuation.comps_count == 0:
            logger.info(f"No comps for '{query.card_name}'; skipping valuation summary")
            return insufficient_data_summary()

        user_prompt = build_summary_prompt(query, valuation)

        def attempt() -> ValuationSummary:
            response = self.llm.generate(SUMMARY_SYSTEM_PROMPT, user_prompt, self.max_tokens, self.temperature)
            self.usage.record(response)
            return parse_summary(response.text, valuation)

        try:
            summary = self.retry_policy.call(attempt, sleep=self._sleep, rng=self._rng, label="valuation summary")
        except RetryExhaustedError as e:
            logger.warning(f"Valuation summary exhausted retries, using median: {e.last_error}")
            return fallback_summary(valuation, reason=f"AI summary failed after {e.attempts} attempt(s)")

        logger.info(f"Valuation summary for '{query.card_name}': fair value ${summary.fair_value:.2f}, "
                    f"trend {summary.trend.value}")
        return summary
