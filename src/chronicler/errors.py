"""Exception types raised by the history compression engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chronicler.summarization.summarizer import GenerationRequest
    from chronicler.summarization.summary_cache import SummaryRecord


class ChroniclerError(Exception):
    """Base class for all chronicler errors."""


class ConfigError(ChroniclerError):
    """Summarization is disabled or the selected collaborator channel is missing."""


class GenerationError(ChroniclerError):
    """A summary could not be produced from the collaborator's reply."""

    def __init__(
        self,
        message: str,
        *,
        template: str | None = None,
        raw_reply: str | None = None,
        request: GenerationRequest | None = None,
    ):
        super().__init__(message)
        self.template = template
        self.raw_reply = raw_reply
        self.request = request


class CoverageConflict(ChroniclerError):
    """Two records cover overlapping floors under different identities."""

    def __init__(self, existing: SummaryRecord, incoming: SummaryRecord):
        overlap = sorted(set(existing.covered_floors) & set(incoming.covered_floors))
        super().__init__(
            f"{incoming.type.value} record @{incoming.identity_floor} overlaps "
            f"{existing.type.value} record @{existing.identity_floor} on floors {overlap}"
        )
        self.existing = existing
        self.incoming = incoming
        self.overlap = overlap
