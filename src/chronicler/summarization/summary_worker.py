"""Background digest generation for finished calendar days."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from chronicler.errors import ChroniclerError

from .summarizer import Summarizer
from .summary_cache import SummaryRecord, SummaryStore, SummaryType, Turn, floors_by_day

_LOG = logging.getLogger(__name__)


class DigestScheduler:
    """Generates per-day digests in tracked background tasks.

    ``schedule()`` never blocks the caller. Pending tasks can be awaited with
    ``flush()`` and cancelled with ``close()``; a closed scheduler refuses new
    work.
    """

    def __init__(self, store: SummaryStore, summarizer: Summarizer):
        """
        Initialize scheduler.

        Args:
            store: Store holding minor summaries and receiving digests
            summarizer: Summarizer used for digest generation
        """
        self.store = store
        self.summarizer = summarizer
        self._tasks: set[asyncio.Task] = set()
        self._day_locks: dict[str, asyncio.Lock] = {}
        self._closed = False

    def _get_lock(self, day: str) -> asyncio.Lock:
        """Get or create lock for a calendar day."""
        if day not in self._day_locks:
            self._day_locks[day] = asyncio.Lock()
        return self._day_locks[day]

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def days_needing_digest(self, turns: Sequence[Turn], current_floor: int) -> list[str]:
        """
        Find finished days that have minor coverage but no digest.

        Days are ordered by first appearance in the transcript; only days
        strictly before the day of ``current_floor`` are considered.
        """
        days = floors_by_day(turns)
        current_turn = next((t for t in turns if t.floor == current_floor), None)
        current_day = current_turn.calendar_key if current_turn else None
        if current_day is None:
            return []

        digested = {r.calendar_key for r in self.store.records(SummaryType.DIGEST)}
        minors = self.store.records(SummaryType.MINOR)

        result = []
        for day, floors in days.items():
            if day == current_day:
                break
            if day in digested:
                continue
            day_floors = set(floors)
            if any(day_floors.intersection(r.covered_floors) for r in minors):
                result.append(day)
        return result

    async def run_once(self, turns: Sequence[Turn], current_floor: int) -> list[SummaryRecord]:
        """Generate every missing digest now and return the new records.

        A failed day is logged and skipped. Generation for a day is serialized,
        so overlapping checks never produce the same digest twice.
        """
        days = floors_by_day(turns)
        created: list[SummaryRecord] = []

        for day in self.days_needing_digest(turns, current_floor):
            async with self._get_lock(day):
                if any(r.calendar_key == day for r in self.store.records(SummaryType.DIGEST)):
                    _LOG.debug("Digest for %s already generated", day)
                    continue
                record = await self._generate_day(day, days[day])
            if record is not None:
                created.append(record)

        return created

    async def _generate_day(self, day: str, day_floors: list[int]) -> SummaryRecord | None:
        minors = [
            r
            for r in self.store.records(SummaryType.MINOR)
            if set(day_floors).intersection(r.covered_floors)
        ]
        try:
            content = await self.summarizer.summarize_day(day, minors)
        except ChroniclerError:
            _LOG.exception("Digest generation failed for %s", day)
            return None

        record = SummaryRecord(
            type=SummaryType.DIGEST,
            covered_floors=tuple(day_floors),
            content=content,
            calendar_key=day,
        )
        self.store.upsert(record)
        _LOG.info(
            "Generated digest for %s covering floors %d-%d",
            day,
            record.first_floor,
            record.identity_floor,
        )
        return record

    def schedule(self, turns: Sequence[Turn], current_floor: int) -> asyncio.Task:
        """Start a background digest check for the transcript as it is now."""
        if self._closed:
            raise RuntimeError("DigestScheduler is closed")

        snapshot = list(turns)
        task = asyncio.get_running_loop().create_task(self._run_safely(snapshot, current_floor))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_safely(self, turns: list[Turn], current_floor: int) -> list[SummaryRecord]:
        try:
            return await self.run_once(turns, current_floor)
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOG.exception("Background digest check failed at floor %d", current_floor)
            return []

    async def flush(self) -> None:
        """Wait until every scheduled digest check has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending digest checks and refuse new ones."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
