"""Summary generation: prompt templates, collaborator calls and payload extraction."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from chronicler.errors import ConfigError, GenerationError
from chronicler.settings import (
    ASSISTANT_PREFILL,
    DIGEST_PROMPT,
    MERGE_LEGACY_PROMPT,
    MINOR_MERGE_PROMPT,
    MINOR_SUMMARY_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
)

from .reasoning import strip_reasoning
from .summary_cache import SummaryRecord

_LOG = logging.getLogger(__name__)

# Values a collaborator returns instead of raising when a generation fails or
# is stopped by the user.
ERROR_SENTINEL = "__ERROR__"
STOPPED_SENTINEL = "__STOPPED__"
FAILURE_SENTINELS = frozenset({ERROR_SENTINEL, STOPPED_SENTINEL})

PLACEHOLDER_PREFIX = "[offline placeholder]"


class LLMProtocol(Protocol):
    """Protocol for the text-generation collaborator."""

    async def generate(
        self,
        system_prompt: str,
        user_content: str,
        assistant_prefill: str | None = None,
    ) -> str:
        """Generate a reply for ``user_content`` under ``system_prompt``."""
        ...


class SummaryTemplate(str, Enum):
    """Fixed prompt templates, each with its own payload delimiter tag."""

    MINOR = "minor"
    MINOR_MERGE = "minor-merge"
    DIGEST = "digest"
    MERGE_LEGACY = "merge-legacy"

    @property
    def tag(self) -> str:
        return _TEMPLATE_TAGS[self]

    @property
    def prompt(self) -> str:
        return _TEMPLATE_PROMPTS[self]


_TEMPLATE_TAGS = {
    SummaryTemplate.MINOR: "minor_summary",
    SummaryTemplate.MINOR_MERGE: "merged_summary",
    SummaryTemplate.DIGEST: "daily_digest",
    SummaryTemplate.MERGE_LEGACY: "major_summary",
}

_TEMPLATE_PROMPTS = {
    SummaryTemplate.MINOR: MINOR_SUMMARY_PROMPT,
    SummaryTemplate.MINOR_MERGE: MINOR_MERGE_PROMPT,
    SummaryTemplate.DIGEST: DIGEST_PROMPT,
    SummaryTemplate.MERGE_LEGACY: MERGE_LEGACY_PROMPT,
}


class RequestStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class GenerationRequest:
    """One summary request and where it is in its lifecycle."""

    template: SummaryTemplate
    prompt: str
    status: RequestStatus = RequestStatus.PENDING
    content: str | None = None
    error: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    def start(self) -> None:
        if self.status != RequestStatus.PENDING:
            raise RuntimeError(f"request already {self.status.value}")
        self.status = RequestStatus.GENERATING

    def succeed(self, content: str) -> None:
        self.status = RequestStatus.SUCCEEDED
        self.content = content

    def fail(self, error: str) -> None:
        self.status = RequestStatus.FAILED
        self.error = error


def extract_summary(response: str, template: SummaryTemplate) -> str | None:
    """
    Pull the payload for ``template`` out of a collaborator reply.

    Reasoning sections are removed first so that tags quoted inside the
    model's scratchpad are never picked up.

    Returns:
        The stripped text between the template's delimiter tags, or None
    """
    if not response:
        return None
    cleaned = strip_reasoning(response)
    tag = re.escape(template.tag)
    match = re.search(rf"<{tag}>(.*?)</{tag}>", cleaned, re.DOTALL | re.IGNORECASE)
    if not match:
        return None
    return match.group(1).strip() or None


def format_floor_passages(passages: Sequence[tuple[int, str]]) -> str:
    """Format ``(floor, text)`` pairs as labelled passages."""
    return "\n\n".join(f"[Floor {floor}]\n{text}" for floor, text in passages)


def format_record_passages(records: Sequence[SummaryRecord]) -> str:
    """Format summary records as labelled passages, in floor order."""
    parts = []
    for record in sorted(records, key=lambda r: r.identity_floor):
        if len(record.covered_floors) == 1:
            label = f"[Floor {record.identity_floor}]"
        else:
            label = f"[Floors {record.first_floor}-{record.identity_floor}]"
        parts.append(f"{label}\n{record.content}")
    return "\n\n".join(parts)


def build_prompt(template: SummaryTemplate, content: str, **metadata: object) -> str:
    """Render ``template`` with the text and its merge metadata."""
    return template.prompt.format(content=content, **metadata)


class Summarizer:
    """Turns raw turn text or earlier summaries into summary content.

    Two collaborator channels are supported: the primary generation channel
    (which receives the assistant prefill) and a dedicated summary-only
    channel. ``use_assistant_channel`` picks which one serves requests.
    With neither channel configured the summarizer runs offline and returns
    deterministic placeholders.
    """

    def __init__(
        self,
        primary: LLMProtocol | None = None,
        assistant: LLMProtocol | None = None,
        *,
        use_assistant_channel: bool = False,
        system_prompt: str = SUMMARY_SYSTEM_PROMPT,
        assistant_prefill: str | None = ASSISTANT_PREFILL,
    ):
        self.primary = primary
        self.assistant = assistant
        self.use_assistant_channel = use_assistant_channel
        self.system_prompt = system_prompt
        self.assistant_prefill = assistant_prefill
        self.last_request: GenerationRequest | None = None

    @property
    def offline(self) -> bool:
        return self.primary is None and self.assistant is None

    @property
    def available(self) -> bool:
        """True when requests can be served (offline placeholders count)."""
        if self.offline:
            return True
        return (self.assistant if self.use_assistant_channel else self.primary) is not None

    def _select_channel(self) -> tuple[LLMProtocol, str | None]:
        """Return the collaborator to use and the prefill it accepts."""
        if self.use_assistant_channel:
            if self.assistant is None:
                raise ConfigError("summary channel selected but no summary collaborator is configured")
            return self.assistant, None
        if self.primary is None:
            raise ConfigError("primary channel selected but no primary collaborator is configured")
        return self.primary, self.assistant_prefill

    async def generate(self, template: SummaryTemplate, content: str, **metadata: object) -> str:
        """
        Run one summary request through the collaborator.

        Args:
            template: Which prompt template (and delimiter tag) to use
            content: Text to summarize
            **metadata: Template fields such as ``floor`` or ``calendar_key``

        Returns:
            The extracted summary content

        Raises:
            ConfigError: The selected collaborator channel is not configured
            GenerationError: Transport failure, sentinel reply or missing payload
        """
        request = GenerationRequest(
            template=template,
            prompt=build_prompt(template, content, **metadata),
            metadata=dict(metadata),
        )
        self.last_request = request

        if self.offline:
            request.start()
            request.succeed(self._placeholder(template, content, metadata))
            return request.content

        llm, prefill = self._select_channel()
        request.start()
        try:
            response = await llm.generate(self.system_prompt, request.prompt, prefill)
        except Exception as exc:
            request.fail(str(exc))
            _LOG.warning("Collaborator call failed for %s summary: %s", template.value, exc)
            raise GenerationError(
                f"collaborator call failed: {exc}", template=template.value, request=request
            ) from exc

        if response is None or response.strip() in FAILURE_SENTINELS:
            request.fail(f"collaborator returned {response!r}")
            raise GenerationError(
                f"collaborator signalled failure ({response!r})",
                template=template.value,
                raw_reply=response,
                request=request,
            )

        summary_text = extract_summary(response, template)
        if summary_text is None:
            request.fail("no delimited payload")
            _LOG.warning("No <%s> payload in %s reply", template.tag, template.value)
            raise GenerationError(
                f"reply has no <{template.tag}> payload",
                template=template.value,
                raw_reply=response,
                request=request,
            )

        request.succeed(summary_text)
        return summary_text

    def _placeholder(self, template: SummaryTemplate, content: str, metadata: dict[str, object]) -> str:
        details = ", ".join(f"{k}={metadata[k]}" for k in sorted(metadata))
        excerpt = " ".join(content.split())[:100]
        return f"{PLACEHOLDER_PREFIX} {template.value} summary ({details}): {excerpt}"

    # ==================== Template entry points ====================

    async def summarize_turn(self, floor: int, text: str) -> str:
        """Generate a minor summary for one turn."""
        return await self.generate(SummaryTemplate.MINOR, text, floor=floor)

    async def summarize_run(self, passages: Sequence[tuple[int, str]]) -> str:
        """Generate one merged minor summary for consecutive ``(floor, text)`` turns."""
        if not passages:
            raise ValueError("cannot summarize an empty run")
        floors = [floor for floor, _ in passages]
        return await self.generate(
            SummaryTemplate.MINOR_MERGE,
            format_floor_passages(passages),
            first_floor=min(floors),
            last_floor=max(floors),
        )

    async def summarize_day(self, calendar_key: str, minors: Sequence[SummaryRecord]) -> str:
        """Generate the digest of one calendar day from its minor summaries."""
        if not minors:
            raise ValueError(f"no minor summaries for {calendar_key}")
        return await self.generate(
            SummaryTemplate.DIGEST,
            format_record_passages(minors),
            calendar_key=calendar_key,
        )

    async def merge_summaries(self, minors: Sequence[SummaryRecord]) -> str:
        """Merge minor summaries into one legacy major summary."""
        if not minors:
            raise ValueError("no summaries to merge")
        return await self.generate(
            SummaryTemplate.MERGE_LEGACY,
            format_record_passages(minors),
            first_floor=min(r.first_floor for r in minors),
            last_floor=max(r.identity_floor for r in minors),
        )
