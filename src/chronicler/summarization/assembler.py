"""Assemble the deduplicated, gap-free context window sent to the collaborator."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from .summary_cache import SummaryRecord, SummaryStore, SummaryType, Turn
from .tiers import Tier, classify

_LOG = logging.getLogger(__name__)

# Transient UI-only markup; narrative text is left untouched.
_IMAGE_REF_RE = re.compile(r"<image-ref\s+[^>]*/?>", re.IGNORECASE)
_LOADING_DIV_RE = re.compile(
    r"<div[^>]*class=\"[^\"]*image-loading-placeholder[^\"]*\"[^>]*>[\s\S]*?</div>", re.IGNORECASE
)
_ERROR_DIV_RE = re.compile(r"<div[^>]*class=\"[^\"]*image-error[^\"]*\"[^>]*>[\s\S]*?</div>", re.IGNORECASE)

# Lookup order per tier for floors that may be summarized.
_LOOKUP_ORDER = {
    Tier.MINOR: (SummaryType.DIGEST, SummaryType.MINOR),
    Tier.COMPRESSED: (SummaryType.DIGEST, SummaryType.MAJOR, SummaryType.MINOR),
}


def clean_transient_markup(content: str) -> str:
    """Remove image references and image placeholders left by the UI."""
    if not content:
        return ""
    content = _IMAGE_REF_RE.sub("", content)
    content = _LOADING_DIV_RE.sub("", content)
    return _ERROR_DIV_RE.sub("", content)


@dataclass(frozen=True)
class WindowEntry:
    """One entry of the assembled context window."""

    floors: tuple[int, ...]
    role: str
    content: str
    tier: Tier
    summary_type: SummaryType | None = None

    @property
    def is_summary(self) -> bool:
        return self.summary_type is not None


def format_summary(record: SummaryRecord) -> str:
    """Label a record's content with the floors it stands for."""
    if record.type == SummaryType.MINOR and len(record.covered_floors) == 1:
        return f"[Floor {record.identity_floor} summary] {record.content}"

    span = f"Floors {record.first_floor}-{record.identity_floor}"
    if record.type == SummaryType.DIGEST:
        day = f" ({record.calendar_key})" if record.calendar_key else ""
        return f"[{span} digest{day}] {record.content}"
    if record.type == SummaryType.MAJOR:
        return f"[{span} merged summary] {record.content}"
    return f"[{span} summary] {record.content}"


class HistoryAssembler:
    """Resolves each floor's representation and builds the context window."""

    def __init__(
        self,
        store: SummaryStore,
        minor_threshold: int = 8,
        major_threshold: int = 25,
        enabled: bool = True,
    ):
        self.store = store
        self.minor_threshold = minor_threshold
        self.major_threshold = major_threshold
        self.enabled = enabled

    def assemble(self, turns: Sequence[Turn], current_floor: int | None = None) -> list[WindowEntry]:
        """
        Build the context window for ``turns``.

        Every floor is represented exactly once: either by its own entry or by
        a merged record already emitted for an earlier floor. A record is only
        used when none of its floors is in the original tier and none is
        already represented; otherwise the next lookup type is tried, and
        finally the raw text of the floor. This method does not raise.

        Args:
            turns: Full transcript in floor order
            current_floor: Latest floor (default: the last turn's floor)

        Returns:
            Window entries in floor order
        """
        if not turns:
            return []
        if current_floor is None:
            current_floor = turns[-1].floor

        if not self.enabled:
            return [
                WindowEntry((t.floor,), t.role, t.content, Tier.ORIGINAL)
                for t in turns
            ]

        entries: list[WindowEntry] = []
        represented: set[int] = set()

        for turn in turns:
            if turn.floor in represented:
                # Covered by a merged record emitted for an earlier floor.
                continue
            try:
                entry = self._resolve(turn, current_floor, represented)
            except Exception:
                _LOG.exception("Failed to resolve floor %d; using original text", turn.floor)
                entry = self._original(turn, Tier.ORIGINAL)
            represented.update(entry.floors)
            entries.append(entry)

        return entries

    def _resolve(self, turn: Turn, current_floor: int, represented: set[int]) -> WindowEntry:
        tier = classify(turn.floor, current_floor, self.minor_threshold, self.major_threshold)
        if tier == Tier.ORIGINAL:
            return self._original(turn, tier)

        for summary_type in _LOOKUP_ORDER[tier]:
            record = self._usable_record(turn.floor, summary_type, current_floor, represented)
            if record is None:
                continue
            _LOG.debug("Floor %d -> %s record @%d", turn.floor, summary_type.value, record.identity_floor)
            return WindowEntry(
                floors=record.covered_floors,
                role="summary" if len(record.covered_floors) > 1 else turn.role,
                content=format_summary(record),
                tier=tier,
                summary_type=record.type,
            )

        return self._original(turn, tier)

    def _usable_record(
        self,
        floor: int,
        summary_type: SummaryType,
        current_floor: int,
        represented: set[int],
    ) -> SummaryRecord | None:
        """Return the first record of ``summary_type`` covering ``floor`` that may be emitted.

        A record reaching into the original tier (or past the current floor)
        would repeat floors that are sent verbatim, and a record touching an
        already represented floor would repeat that floor.
        """
        for record in self.store.records(summary_type):
            if not record.covers(floor):
                continue
            reach = classify(record.identity_floor, current_floor, self.minor_threshold, self.major_threshold)
            if reach == Tier.ORIGINAL:
                _LOG.debug("Skipping %s record @%d: reaches the original tier", summary_type.value, record.identity_floor)
                continue
            if represented.intersection(record.covered_floors):
                continue
            return record
        return None

    def _original(self, turn: Turn, tier: Tier) -> WindowEntry:
        return WindowEntry((turn.floor,), turn.role, clean_transient_markup(turn.content), tier)
