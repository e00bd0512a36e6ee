"""Anthropic client wrapper with retry logic."""

import asyncio
import json
import logging
import os
from typing import Any

import anthropic

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
RETRY_MULTIPLIER = 2.0


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block from a model response."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class LLMClient:
    """Wrapper around the Anthropic client with retry and JSON helpers."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        """Initialize the client.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
            model: Model name. If not provided, uses TRACKFLOW_LLM_MODEL env var.
        """
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self.model = model or os.getenv("TRACKFLOW_LLM_MODEL", DEFAULT_MODEL)
        self._client = anthropic.Anthropic(api_key=self.api_key)

    async def generate_json(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ) -> dict[str, Any]:
        """Generate a JSON object response.

        Raises:
            ValueError: If the response is not a JSON object
            anthropic.APIError: If the API call fails after retries
        """
        text = await self.generate_text(
            prompt, system=system, max_tokens=max_tokens, temperature=temperature
        )
        text = strip_code_fences(text)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON response: {text[:500]}...")
            raise ValueError(f"Invalid JSON in response: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    async def generate_text(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        """Generate a plain text response."""
        response = await self._call_with_retry(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

    async def _call_with_retry(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> anthropic.types.Message:
        """Call the Messages API with exponential backoff.

        Rate limits, connection errors and 5xx responses are retried; other
        API errors propagate immediately.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        last_error: Exception | None = None
        delay = RETRY_DELAY

        for attempt in range(MAX_RETRIES):
            try:
                # Sync client runs in the default executor
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(
                    None, lambda: self._client.messages.create(**kwargs)
                )
            except (anthropic.RateLimitError, anthropic.APIConnectionError) as e:
                last_error = e
                logger.warning(
                    f"{type(e).__name__} (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s..."
                )
            except anthropic.APIStatusError as e:
                if e.status_code < 500:
                    raise
                last_error = e
                logger.warning(
                    f"Server error {e.status_code} (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s..."
                )

            if attempt < MAX_RETRIES - 1:
                await asyncio.sleep(delay)
                delay *= RETRY_MULTIPLIER

        raise last_error or RuntimeError("Unexpected retry failure")


# Global client instance (lazy initialization)
_client: LLMClient | None = None


def get_client() -> LLMClient:
    """Get or create the global LLM client instance."""
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
