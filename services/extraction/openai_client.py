"""Shared OpenAI chat-completions access for both providers.

Includes retry logic with exponential backoff for transient API errors and
token accounting for the usage ledger.
"""

import logging
import os
from typing import Any

import openai
from openai import OpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.schema import TokenUsage
from services.shared.errors import ExtractionProviderError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIChatClient:
    """Lazy OpenAI client with retrying JSON-mode chat completions.

    Requires OPENAI_API_KEY environment variable unless a key is passed per call.
    """

    provider_label = "openai"

    def __init__(self) -> None:
        self._client: OpenAI | None = None

    @staticmethod
    def has_api_key() -> bool:
        return os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self, api_key: str | None = None) -> OpenAI:
        """Get or create the OpenAI client, rebuilding it when the key changes."""
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ExtractionProviderError(
                "OPENAI_API_KEY environment variable not set", provider=self.provider_label
            )
        if self._client is None or self._client.api_key != key:
            self._client = OpenAI(api_key=key)
        return self._client

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),  # Retry on transient errors
        wait=wait_exponential_jitter(initial=1, max=60),  # Exponential backoff with jitter
        stop=stop_after_attempt(3),  # Max 3 attempts
        reraise=True,  # Re-raise exception after max attempts
    )
    def _complete_with_retry(
        self, client: OpenAI, model: str, messages: list[dict[str, Any]]
    ) -> Any:
        """Call OpenAI with retry logic for transient errors.

        Retries up to 3 times with increasing delays (1s, 2-4s, 4-8s, up to 60s max).

        Returns:
            OpenAI API response
        """
        return client.chat.completions.create(  # type: ignore[call-overload]
            model=model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=0,  # Deterministic output
        )

    def complete_json(
        self,
        model: str,
        messages: list[dict[str, Any]],
        api_key: str | None = None,
    ) -> tuple[str, TokenUsage]:
        """Run one JSON-mode completion.

        Args:
            model: Model name
            messages: Chat messages
            api_key: Optional key overriding OPENAI_API_KEY

        Returns:
            Tuple of (message content, token usage)

        Raises:
            ExtractionProviderError: On API failure after retries or an empty choice list
        """
        client = self._get_client(api_key)
        try:
            response = self._complete_with_retry(client, model, messages)
        except openai.OpenAIError as e:
            logger.error(f"OpenAI call failed for model {model}: {e}")
            raise ExtractionProviderError(
                f"OpenAI request failed: {e}", provider=self.provider_label
            ) from e

        if not response.choices:
            raise ExtractionProviderError(
                "No choices in API response", provider=self.provider_label
            )

        usage = TokenUsage(
            model=model,
            input_tokens=getattr(response.usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(response.usage, "completion_tokens", 0) or 0,
        )
        return response.choices[0].message.content or "", usage
