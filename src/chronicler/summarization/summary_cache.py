"""Summary records and the in-process store that owns them.

The store keeps every record in memory, ordered by identity floor, and writes
each mutation through to an optional persistent backend (see
``chronicler.summary_db``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from chronicler.errors import CoverageConflict
from chronicler.settings import TruncatePolicy

_LOG = logging.getLogger(__name__)

COLLABORATOR_ROLES = frozenset({"assistant", "ai"})


class SummaryType(str, Enum):
    """Kinds of summary record."""

    MINOR = "minor"
    MAJOR = "major"
    DIGEST = "digest"

    @classmethod
    def parse(cls, value: str | SummaryType) -> SummaryType:
        """Parse a stored type name, accepting the legacy merge-tier spellings."""
        if isinstance(value, SummaryType):
            return value
        normalized = value.strip().lower()
        if normalized in ("digest-legacy", "super"):
            return cls.MAJOR
        return cls(normalized)


@dataclass(frozen=True)
class Turn:
    """One floor of the transcript, as supplied by the host application."""

    floor: int
    role: str
    content: str
    calendar_key: str | None = None

    @property
    def is_collaborator(self) -> bool:
        return self.role.lower() in COLLABORATOR_ROLES


@dataclass
class SummaryRecord:
    """A stored summary covering one or more floors."""

    type: SummaryType
    covered_floors: tuple[int, ...]
    content: str
    created_at: int | None = None
    calendar_key: str | None = None
    identity_floor: int = field(init=False)

    def __post_init__(self):
        self.type = SummaryType.parse(self.type)
        floors = tuple(sorted(set(self.covered_floors)))
        if not floors:
            raise ValueError("covered_floors must not be empty")
        if floors[0] < 1:
            raise ValueError(f"floors are 1-based, got {floors[0]}")
        self.covered_floors = floors
        self.identity_floor = floors[-1]
        if self.created_at is None:
            self.created_at = int(time.time())

    @property
    def key(self) -> tuple[SummaryType, int]:
        return (self.type, self.identity_floor)

    @property
    def first_floor(self) -> int:
        return self.covered_floors[0]

    def covers(self, floor: int) -> bool:
        return floor in self.covered_floors

    def to_dict(self) -> dict[str, Any]:
        """Return the persisted layout of this record."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "identityFloor": self.identity_floor,
            "coveredFloors": list(self.covered_floors),
            "content": self.content,
            "createdAt": self.created_at,
        }
        if self.calendar_key is not None:
            data["calendarKey"] = self.calendar_key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SummaryRecord:
        """Rebuild a record from its persisted layout.

        Older saves carry only ``floor`` for single-turn records and
        ``timestamp`` in milliseconds instead of ``createdAt``.
        """
        covered = data.get("coveredFloors") or [data.get("identityFloor", data.get("floor"))]
        created_at = data.get("createdAt")
        if created_at is None and data.get("timestamp") is not None:
            created_at = int(data["timestamp"]) // 1000
        return cls(
            type=SummaryType.parse(data["type"]),
            covered_floors=tuple(int(f) for f in covered),
            content=data["content"],
            created_at=created_at,
            calendar_key=data.get("calendarKey"),
        )


class RecordBackend(Protocol):
    """Persistent key-value storage for summary records."""

    def load(self) -> list[SummaryRecord]:
        ...

    def save(self, record: SummaryRecord) -> None:
        ...

    def delete(self, summary_type: SummaryType, identity_floor: int) -> None:
        ...


class SummaryStore:
    """Ordered collection of summary records keyed by ``(type, identity_floor)``.

    The store is used from a single event loop. No method awaits, so every
    mutation completes before a background digest task or a running backfill
    can observe the store.
    """

    def __init__(
        self,
        backend: RecordBackend | None = None,
        *,
        truncate_policy: TruncatePolicy = TruncatePolicy.KEEP,
        strict: bool = False,
    ):
        """
        Initialize the store.

        Args:
            backend: Optional persistence; existing records are loaded from it
            truncate_policy: What ``truncate`` does with records straddling the threshold
            strict: Raise ``CoverageConflict`` on partial overlaps instead of logging
        """
        self.backend = backend
        self.truncate_policy = TruncatePolicy(truncate_policy)
        self.strict = strict
        self._records: dict[tuple[SummaryType, int], SummaryRecord] = {}

        if backend is not None:
            for record in backend.load():
                self._records[record.key] = record
            _LOG.debug("Loaded %d summary records from backend", len(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    # ==================== Queries ====================

    def get(self, summary_type: SummaryType | str, identity_floor: int) -> SummaryRecord | None:
        """Return the record with exactly this identity, if any."""
        return self._records.get((SummaryType.parse(summary_type), identity_floor))

    def records(self, summary_type: SummaryType | str | None = None) -> list[SummaryRecord]:
        """Return records ordered by identity floor (optionally of one type)."""
        wanted = SummaryType.parse(summary_type) if summary_type is not None else None
        result = [r for r in self._records.values() if wanted is None or r.type == wanted]
        result.sort(key=lambda r: (r.identity_floor, r.type.value))
        return result

    def find_by_floor(self, floor: int, summary_type: SummaryType | str) -> SummaryRecord | None:
        """Return a record of ``summary_type`` whose coverage contains ``floor``.

        When several records qualify (a latent coverage conflict) the one with
        the lowest identity floor wins, so lookups stay deterministic.
        """
        for record in self.records(summary_type):
            if record.covers(floor):
                return record
        return None

    def covered_floors(self, types: Iterable[SummaryType] | None = None) -> set[int]:
        """Return every floor covered by at least one record of ``types``."""
        wanted = set(types) if types is not None else set(SummaryType)
        covered: set[int] = set()
        for record in self.records():
            if record.type in wanted:
                covered.update(record.covered_floors)
        return covered

    # ==================== Mutations ====================

    def upsert(self, record: SummaryRecord) -> SummaryRecord:
        """Insert ``record`` or replace the record with the same identity.

        An incoming ``minor`` record removes other minor records whose coverage
        it strictly contains (a merged run subsumes the singletons inside it).
        Partial overlaps are reported as ``CoverageConflict``.
        """
        conflicts: list[CoverageConflict] = []
        subsumed: list[SummaryRecord] = []
        incoming = set(record.covered_floors)

        for existing in self._records.values():
            if existing.key == record.key or existing.type != record.type:
                continue
            overlap = incoming & set(existing.covered_floors)
            if not overlap:
                continue
            if record.type == SummaryType.MINOR and set(existing.covered_floors) < incoming:
                subsumed.append(existing)
            else:
                conflicts.append(CoverageConflict(existing, record))

        if conflicts and self.strict:
            raise conflicts[0]
        for conflict in conflicts:
            _LOG.warning("Coverage conflict: %s", conflict)

        for existing in subsumed:
            _LOG.info(
                "Minor record @%d subsumed by merged record @%d",
                existing.identity_floor,
                record.identity_floor,
            )
            self._delete(existing)

        self._records[record.key] = record
        if self.backend is not None:
            self.backend.save(record)
        return record

    def import_records(self, items: Iterable[dict[str, Any]]) -> list[SummaryRecord]:
        """Upsert records given in their persisted layout, current or legacy."""
        imported = [self.upsert(SummaryRecord.from_dict(item)) for item in items]
        _LOG.info("Imported %d summary records", len(imported))
        return imported

    def export_records(self) -> list[dict[str, Any]]:
        """Return every record in its persisted layout, ordered by identity floor."""
        return [record.to_dict() for record in self.records()]

    def truncate(self, threshold_floor: int) -> list[SummaryRecord]:
        """Remove records at or after ``threshold_floor`` (narrative rollback).

        Records whose coverage lies entirely at or above the threshold are
        always removed. Records straddling it are kept or dropped according to
        ``truncate_policy``.

        Returns:
            The removed records
        """
        removed = []
        for record in list(self._records.values()):
            if record.first_floor >= threshold_floor:
                removed.append(record)
            elif (
                self.truncate_policy == TruncatePolicy.DROP
                and record.identity_floor >= threshold_floor
            ):
                removed.append(record)
        for record in removed:
            self._delete(record)
        if removed:
            _LOG.info("Truncated %d summary records at floor %d", len(removed), threshold_floor)
        return removed

    def remove_exact(self, floor: int, summary_type: SummaryType | str = SummaryType.MINOR) -> SummaryRecord | None:
        """Remove the record of ``summary_type`` covering exactly ``floor`` alone."""
        record = self._records.get((SummaryType.parse(summary_type), floor))
        if record is None or record.covered_floors != (floor,):
            return None
        self._delete(record)
        return record

    def remove_covering(
        self,
        floor: int,
        types: Iterable[SummaryType] | None = None,
    ) -> list[SummaryRecord]:
        """Remove every record of ``types`` whose coverage contains ``floor``.

        Returns:
            The removed records, ordered by identity floor
        """
        wanted = set(types) if types is not None else set(SummaryType)
        removed = [r for r in self.records() if r.type in wanted and r.covers(floor)]
        for record in removed:
            self._delete(record)
        if removed:
            _LOG.info("Removed %d summary records covering floor %d", len(removed), floor)
        return removed

    def clear(self) -> None:
        for record in list(self._records.values()):
            self._delete(record)

    def _delete(self, record: SummaryRecord) -> None:
        del self._records[record.key]
        if self.backend is not None:
            self.backend.delete(record.type, record.identity_floor)


def floors_by_day(turns: Sequence[Turn]) -> dict[str, list[int]]:
    """Group floors by calendar key, keeping days in order of first appearance."""
    days: dict[str, list[int]] = {}
    for turn in turns:
        if turn.calendar_key:
            days.setdefault(turn.calendar_key, []).append(turn.floor)
    return days
