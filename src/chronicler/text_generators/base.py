from __future__ import annotations

from abc import ABC, abstractmethod


class TextGeneratorAPI(ABC):
    """Abstract base class for text generator providers."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_content: str,
        assistant_prefill: str | None = None,
    ) -> str:
        """Return generated text for ``user_content`` under ``system_prompt``.

        ``assistant_prefill``, when given, is sent as the start of the
        assistant turn so the model continues from it.
        """
        raise NotImplementedError
