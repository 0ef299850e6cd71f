"""
LLM inference capability.

The reasoning service only needs text in, text out plus token counts for
cost accounting. OpenAIInferenceClient wraps the OpenAI Chat Completions API
and translates its errors into the pipeline's transient/non-transient split.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import openai
from openai import OpenAI

from card_valuation.config import LLM_TIMEOUT_SECONDS, OPENAI_API_KEY, OPENAI_MODEL
from card_valuation.errors import TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)

# Errors worth another attempt: network, timeout, throttling, server side
_TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class LLMResponse:
    """Completion text plus usage."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: Optional[str] = None


class BaseLLMClient(ABC):
    """Abstract text-generation capability."""

    @abstractmethod
    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float
    ) -> LLMResponse:
        """
        Generate a completion.

        Raises:
            TransientUpstreamError: timeout, throttling, 5xx
            UpstreamError: any other API failure
        """
        pass


class OpenAIInferenceClient(BaseLLMClient):
    """OpenAI Chat Completions client in JSON mode."""

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        *,
        api_key: Optional[str] = OPENAI_API_KEY,
        timeout: float = LLM_TIMEOUT_SECONDS,
        client: Optional[OpenAI] = None
    ):
        self.model = model
        if client is not None:
            self._client = client
        else:
            kwargs = {"timeout": timeout, "max_retries": 0}  # retries are owned by RetryPolicy
            if api_key:
                kwargs["api_key"] = api_key
            self._client = OpenAI(**kwargs)

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float
    ) -> LLMResponse:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except _TRANSIENT_ERRORS as e:
            raise TransientUpstreamError(f"OpenAI transient error: {e}", source="openai") from e
        except openai.APIError as e:
            raise UpstreamError(f"OpenAI error: {e}", source="openai") from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = response.usage
        return LLMResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            model=response.model,
        )
