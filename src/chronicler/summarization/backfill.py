"""Backfill: summarize collaborator turns that no record covers yet."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from chronicler.errors import ChroniclerError

from .summarizer import Summarizer
from .summary_cache import SummaryRecord, SummaryStore, SummaryType, Turn

_LOG = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class BackfillReport:
    """Outcome of one backfill pass."""

    runs: list[list[int]] = field(default_factory=list)
    created: list[SummaryRecord] = field(default_factory=list)
    failed: list[list[int]] = field(default_factory=list)
    reason: str = "ok"  # "disabled" / "unavailable" when nothing was attempted

    @property
    def ok(self) -> bool:
        return self.reason == "ok" and not self.failed


def partition_runs(floors: Sequence[int], max_size: int = 0) -> list[list[int]]:
    """
    Split floors into maximal runs of consecutive numbers.

    Args:
        floors: Floor numbers (any order, duplicates ignored)
        max_size: If positive, runs longer than this are cut into chunks

    Returns:
        Runs in ascending order, e.g. [3, 4, 5, 9, 11, 12] -> [[3, 4, 5], [9], [11, 12]]
    """
    runs: list[list[int]] = []
    current: list[int] = []

    for floor in sorted(set(floors)):
        if current and (floor != current[-1] + 1 or (max_size and len(current) >= max_size)):
            runs.append(current)
            current = []
        current.append(floor)

    if current:
        runs.append(current)
    return runs


class BackfillBatcher:
    """Finds uncovered collaborator turns and fills them run by run."""

    def __init__(self, store: SummaryStore, summarizer: Summarizer, max_batch_size: int = 0):
        """
        Initialize batcher.

        Args:
            store: Store that receives the generated records
            summarizer: Summarizer used for every run
            max_batch_size: Longest run sent in one request (0 = no limit)
        """
        self.store = store
        self.summarizer = summarizer
        self.max_batch_size = max_batch_size

    def find_uncovered(self, turns: Sequence[Turn]) -> list[int]:
        """Return collaborator floors with no minor, major or digest record."""
        covered = self.store.covered_floors()
        return [t.floor for t in turns if t.is_collaborator and t.floor not in covered]

    def plan(self, turns: Sequence[Turn]) -> list[list[int]]:
        return partition_runs(self.find_uncovered(turns), self.max_batch_size)

    async def run(
        self,
        turns: Sequence[Turn],
        on_progress: ProgressCallback | None = None,
    ) -> BackfillReport:
        """
        Summarize every uncovered run, one run at a time.

        A run whose generation fails is logged and skipped; the remaining runs
        still execute.

        Args:
            turns: Full transcript in floor order
            on_progress: Called with (run_index, total_runs) before each run, 1-based

        Returns:
            Report of created records and failed runs
        """
        by_floor = {t.floor: t for t in turns}
        report = BackfillReport(runs=self.plan(turns))
        total = len(report.runs)

        if not total:
            _LOG.debug("Backfill: nothing to summarize")
            return report

        _LOG.info("Backfill: %d run(s) to summarize", total)

        for index, run in enumerate(report.runs, start=1):
            if on_progress is not None:
                on_progress(index, total)
            try:
                record = await self._summarize_run(run, by_floor)
            except ChroniclerError:
                _LOG.exception("Backfill run %d/%d (floors %d-%d) failed", index, total, run[0], run[-1])
                report.failed.append(run)
                continue
            self.store.upsert(record)
            report.created.append(record)
            _LOG.info("Backfill generated minor summary for floors %d-%d", run[0], run[-1])

        return report

    async def _summarize_run(self, run: list[int], by_floor: dict[int, Turn]) -> SummaryRecord:
        if len(run) == 1:
            floor = run[0]
            content = await self.summarizer.summarize_turn(floor, by_floor[floor].content)
        else:
            content = await self.summarizer.summarize_run([(f, by_floor[f].content) for f in run])

        return SummaryRecord(
            type=SummaryType.MINOR,
            covered_floors=tuple(run),
            content=content,
            calendar_key=by_floor[run[-1]].calendar_key,
        )
