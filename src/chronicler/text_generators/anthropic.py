"""Text-generation backend that calls Anthropic's Claude models."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError

from .base import TextGeneratorAPI

_log = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# A single shared client is plenty; reuse it across all requests              #
# --------------------------------------------------------------------------- #
_CLIENT_CACHE: Dict[str, AsyncAnthropic] = {}


class AnthropicTextGenerator(TextGeneratorAPI):
    """Generate text using Anthropic's Claude models (default: **claude-haiku-4-5**).

    The class relies on the ``anthropic`` package and an ``ANTHROPIC_API_KEY``
    environment variable being present.

    The system prompt goes to the top-level ``system`` parameter (with prompt
    caching, since it is identical for every summary request). A prefill is
    sent as a trailing assistant message; Claude continues from it and the
    returned text does not repeat it.
    """

    def __init__(self, model: str = "claude-haiku-4-5", temperature: float = 0.7) -> None:
        self.model = model
        self.temperature = temperature

    # ---------------------------------------------------------------- helpers

    def _get_client(self) -> AsyncAnthropic:
        """Return (and cache) a shared ``AsyncAnthropic`` client instance."""
        if "default" not in _CLIENT_CACHE:
            _CLIENT_CACHE["default"] = AsyncAnthropic()  # picks up API key
        return _CLIENT_CACHE["default"]

    # ---------------------------------------------------------------- public

    async def generate(
        self,
        system_prompt: str,
        user_content: str,
        assistant_prefill: str | None = None,
    ) -> str:
        """Return Claude's reply as a plain string."""
        messages: List[Dict[str, Any]] = [{"role": "user", "content": user_content}]
        if assistant_prefill:
            # The API rejects a final assistant message ending in whitespace.
            messages.append({"role": "assistant", "content": assistant_prefill.rstrip()})

        max_tokens = int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096"))
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": self.temperature,
        }
        if system_prompt:
            kwargs["system"] = [
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ]

        client = self._get_client()
        try:
            response = await client.messages.create(**kwargs)
        except RateLimitError as e:
            _log.warning("Anthropic rate limit hit for model %s: %s", self.model, e)
            raise
        except APIConnectionError as e:
            _log.error("Anthropic connection error for model %s: %s", self.model, e)
            raise
        except APIError as e:
            _log.error(
                "Anthropic API error for model %s (status %s): %s",
                self.model,
                getattr(e, "status_code", "unknown"),
                e.message,
            )
            raise

        # SDK returns a list of content blocks; aggregate text blocks.
        parts: List[str] = []
        for block in getattr(response, "content", []) or []:
            text = getattr(block, "text", None)
            if text:
                parts.append(text)
        return "".join(parts).strip()
