"""History compression engine - wires the store, summarizer and maintenance jobs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from chronicler.errors import ConfigError, GenerationError
from chronicler.settings import SummarySettings
from chronicler.summarization import (
    BackfillBatcher,
    BackfillReport,
    DigestScheduler,
    HistoryAssembler,
    LLMProtocol,
    Summarizer,
    SummaryRecord,
    SummaryStore,
    SummaryType,
    Turn,
    WindowEntry,
)
from chronicler.summarization.backfill import ProgressCallback
from chronicler.summary_db import SqliteRecordBackend
from chronicler.text_generators import get_text_generator

_LOG = logging.getLogger(__name__)


class ResultReason(str, Enum):
    OK = "ok"
    DISABLED = "disabled"
    UNAVAILABLE = "unavailable"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class GenerationResult:
    """Outcome of a single summary request made through the engine."""

    reason: ResultReason
    record: SummaryRecord | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.reason == ResultReason.OK


def _build_generator(api: str, model: str) -> LLMProtocol | None:
    if not api or api.lower() in ("none", "off"):
        return None
    return get_text_generator(api, model)


class HistoryCompressionEngine:
    """Entry point used by the host application.

    The host calls ``record_turn`` after every new turn, ``build_window``
    before every generation request, and ``rollback``/``reroll`` when the
    transcript is rewound or a turn is regenerated.
    """

    def __init__(
        self,
        settings: SummarySettings,
        store: SummaryStore | None = None,
        summarizer: Summarizer | None = None,
    ):
        self.settings = settings
        self.store = store if store is not None else SummaryStore(truncate_policy=settings.truncate_policy)
        self.summarizer = summarizer if summarizer is not None else Summarizer(
            use_assistant_channel=settings.use_assistant_channel
        )
        self.batcher = BackfillBatcher(self.store, self.summarizer, settings.batch_size)
        self.digests = DigestScheduler(self.store, self.summarizer)
        self.assembler = HistoryAssembler(
            self.store,
            minor_threshold=settings.minor_threshold,
            major_threshold=settings.major_threshold,
            enabled=settings.enabled,
        )

        if settings.enabled:
            _LOG.info(
                "Summarization enabled (thresholds %d/%d, channel=%s, offline=%s)",
                settings.minor_threshold,
                settings.major_threshold,
                "assistant" if settings.use_assistant_channel else "primary",
                self.summarizer.offline,
            )
        else:
            _LOG.info("Summarization disabled")

    @classmethod
    def from_settings(cls, settings: SummarySettings | None = None) -> HistoryCompressionEngine:
        """Build an engine, its collaborators and its persistence from settings."""
        if settings is None:
            settings = SummarySettings.from_env()

        backend = SqliteRecordBackend(settings.db_path, settings.session_id) if settings.db_path else None
        store = SummaryStore(backend, truncate_policy=settings.truncate_policy)
        summarizer = Summarizer(
            primary=_build_generator(settings.primary_api, settings.primary_model),
            assistant=_build_generator(settings.assistant_api, settings.assistant_model),
            use_assistant_channel=settings.use_assistant_channel,
        )
        return cls(settings, store=store, summarizer=summarizer)

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    # ==================== Per-turn generation ====================

    async def record_turn(
        self,
        turns: Sequence[Turn],
        floor: int,
        pre_generated_summary: str | None = None,
    ) -> GenerationResult:
        """
        Summarize a newly recorded turn and schedule the digest check.

        Args:
            turns: Full transcript in floor order, including the new turn
            floor: Floor of the new turn
            pre_generated_summary: Summary already extracted from the primary
                reply; stored as-is instead of calling the collaborator

        Returns:
            Result of the turn's minor summary
        """
        if not self.enabled:
            return GenerationResult(ResultReason.DISABLED)

        turn = _find_turn(turns, floor)

        if pre_generated_summary and pre_generated_summary.strip():
            record = self.store.upsert(
                SummaryRecord(
                    type=SummaryType.MINOR,
                    covered_floors=(floor,),
                    content=pre_generated_summary.strip(),
                    calendar_key=turn.calendar_key,
                )
            )
            _LOG.info("Using pre-generated minor summary for floor %d", floor)
            result = GenerationResult(ResultReason.OK, record=record)
        elif not turn.is_collaborator:
            result = GenerationResult(ResultReason.SKIPPED)
        else:
            result = await self.summarize_floor(turns, floor)

        self._schedule_digests(turns, floor)
        return result

    async def summarize_floor(self, turns: Sequence[Turn], floor: int) -> GenerationResult:
        """Generate and store the minor summary of one floor.

        A failed generation never touches the store.
        """
        if not self.enabled:
            return GenerationResult(ResultReason.DISABLED)

        turn = _find_turn(turns, floor)
        try:
            content = await self.summarizer.summarize_turn(floor, turn.content)
        except ConfigError as e:
            _LOG.warning("Minor summary for floor %d unavailable: %s", floor, e)
            return GenerationResult(ResultReason.UNAVAILABLE, error=str(e))
        except GenerationError as e:
            _LOG.warning("Minor summary for floor %d failed: %s", floor, e)
            return GenerationResult(ResultReason.FAILED, error=str(e))

        record = self.store.upsert(
            SummaryRecord(
                type=SummaryType.MINOR,
                covered_floors=(floor,),
                content=content,
                calendar_key=turn.calendar_key,
            )
        )
        _LOG.info("Generated minor summary for floor %d", floor)
        return GenerationResult(ResultReason.OK, record=record)

    async def merge_minors(self, floors: Iterable[int]) -> GenerationResult:
        """Merge the minor summaries of ``floors`` into one legacy major record."""
        if not self.enabled:
            return GenerationResult(ResultReason.DISABLED)

        minors: dict[int, SummaryRecord] = {}
        for floor in floors:
            record = self.store.find_by_floor(floor, SummaryType.MINOR)
            if record is not None:
                minors[record.identity_floor] = record
        if not minors:
            return GenerationResult(ResultReason.FAILED, error="no minor summaries found for given floors")

        sources = sorted(minors.values(), key=lambda r: r.identity_floor)
        try:
            content = await self.summarizer.merge_summaries(sources)
        except ConfigError as e:
            return GenerationResult(ResultReason.UNAVAILABLE, error=str(e))
        except GenerationError as e:
            _LOG.warning("Merging minor summaries failed: %s", e)
            return GenerationResult(ResultReason.FAILED, error=str(e))

        covered = sorted({f for r in sources for f in r.covered_floors})
        record = self.store.upsert(
            SummaryRecord(
                type=SummaryType.MAJOR,
                covered_floors=tuple(covered),
                content=content,
                calendar_key=sources[-1].calendar_key,
            )
        )
        _LOG.info("Generated merged summary covering floors %d-%d", covered[0], covered[-1])
        return GenerationResult(ResultReason.OK, record=record)

    # ==================== Maintenance ====================

    async def backfill(
        self,
        turns: Sequence[Turn],
        on_progress: ProgressCallback | None = None,
    ) -> BackfillReport:
        """Summarize every uncovered collaborator turn."""
        if not self.enabled:
            return BackfillReport(reason=ResultReason.DISABLED.value)
        if not self.summarizer.available:
            _LOG.warning("Backfill skipped: selected summary channel is not configured")
            return BackfillReport(reason=ResultReason.UNAVAILABLE.value)
        return await self.batcher.run(turns, on_progress)

    def _schedule_digests(self, turns: Sequence[Turn], floor: int) -> None:
        if self.digests.closed:
            _LOG.warning("Digest scheduler closed; skipping digest check for floor %d", floor)
            return
        self.digests.schedule(turns, floor)

    async def flush(self) -> None:
        """Wait for background digest work to finish."""
        await self.digests.flush()

    async def close(self) -> None:
        await self.digests.close()

    # ==================== Context window ====================

    def build_window(self, turns: Sequence[Turn], current_floor: int | None = None) -> list[WindowEntry]:
        """Assemble the context window for the next generation request."""
        return self.assembler.assemble(turns, current_floor)

    # ==================== Transcript edits ====================

    def rollback(self, floor: int) -> list[SummaryRecord]:
        """Drop summaries invalidated by rewinding the transcript to before ``floor``."""
        return self.store.truncate(floor)

    def reroll(self, floor: int) -> list[SummaryRecord]:
        """Drop every summary invalidated by regenerating the turn at ``floor``.

        That is the turn's own minor summary plus any merged minor, major or
        digest record whose coverage contains the floor.
        """
        return self.store.remove_covering(floor, (SummaryType.MINOR, SummaryType.MAJOR, SummaryType.DIGEST))


def _find_turn(turns: Sequence[Turn], floor: int) -> Turn:
    # Floors are 1-based positions; fall back to a scan for sparse lists.
    if 0 < floor <= len(turns) and turns[floor - 1].floor == floor:
        return turns[floor - 1]
    for turn in turns:
        if turn.floor == floor:
            return turn
    raise ValueError(f"no turn at floor {floor}")
