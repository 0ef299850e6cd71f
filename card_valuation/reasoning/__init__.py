from card_valuation.reasoning.llm_client import BaseLLMClient, LLMResponse, OpenAIInferenceClient
from card_valuation.reasoning.service import (
    OcrReasoningService, empty_metadata, fallback_metadata, load_known_names, parse_metadata
)

__all__ = [
    "BaseLLMClient",
    "LLMResponse",
    "OpenAIInferenceClient",
    "OcrReasoningService",
    "empty_metadata",
    "fallback_metadata",
    "load_known_names",
    "parse_metadata",
]
