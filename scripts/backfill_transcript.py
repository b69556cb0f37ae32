#!/usr/bin/env python3
"""Backfill missing summaries for a saved transcript.

The transcript is a JSON list of turns in floor order, each an object with
``role`` (or ``type``), ``content`` and an optional ``calendar_key``.
Settings come from ``SUMMARY_*`` environment variables (``.env`` is loaded).

    python scripts/backfill_transcript.py transcript.json --dry-run
    python scripts/backfill_transcript.py transcript.json --db summaries.db --digests
    python scripts/backfill_transcript.py transcript.json --import saved_summaries.json

``--import`` reads a JSON list of saved summary records (older saves with
``floor``/``timestamp`` fields are accepted); ``--export`` writes the store
after the run.
"""

import argparse
import asyncio
import dataclasses
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

from chronicler import HistoryCompressionEngine, SummarySettings
from chronicler.summarization import Turn


def load_transcript(path: Path) -> list[Turn]:
    """Read a JSON transcript into turns numbered from floor 1."""
    data = json.loads(path.read_text(encoding="utf-8"))
    turns = []
    for index, entry in enumerate(data, start=1):
        turns.append(
            Turn(
                floor=index,
                role=entry.get("role") or entry.get("type") or "user",
                content=entry.get("content") or "",
                calendar_key=entry.get("calendar_key") or entry.get("calendarKey"),
            )
        )
    return turns


def print_progress(current: int, total: int) -> None:
    print(f"  [{current}/{total}] summarizing...")


async def main():
    parser = argparse.ArgumentParser(description="Backfill missing transcript summaries")
    parser.add_argument("transcript", type=Path, help="JSON transcript file")
    parser.add_argument("--db", help="Summary database (overrides SUMMARY_DB_PATH)")
    parser.add_argument("--session", help="Session id inside the database")
    parser.add_argument("--dry-run", action="store_true", help="List uncovered runs without generating")
    parser.add_argument("--digests", action="store_true", help="Also generate missing day digests")
    parser.add_argument("--import", dest="import_path", type=Path, help="JSON list of saved summary records to load first")
    parser.add_argument("--export", dest="export_path", type=Path, help="Write all summary records to this JSON file")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    settings = SummarySettings.from_env()
    overrides = {"enabled": True}
    if args.db:
        overrides["db_path"] = args.db
    if args.session:
        overrides["session_id"] = args.session
    settings = dataclasses.replace(settings, **overrides)

    turns = load_transcript(args.transcript)
    engine = HistoryCompressionEngine.from_settings(settings)

    print(f"Transcript: {args.transcript} ({len(turns)} floors)")
    print(f"Database: {settings.db_path or '(in memory)'}")
    if args.import_path:
        saved = json.loads(args.import_path.read_text(encoding="utf-8"))
        imported = engine.store.import_records(saved)
        print(f"Imported {len(imported)} record(s) from {args.import_path}")
    print(f"Existing records: {len(engine.store)}")
    print(f"Batch size: {settings.batch_size or 'unlimited'}")
    print()

    runs = engine.batcher.plan(turns)
    if args.dry_run:
        print(f"{len(runs)} uncovered run(s):")
        for run in runs:
            print(f"  floors {run[0]}-{run[-1]} ({len(run)} turn(s))")
        return

    report = await engine.backfill(turns, on_progress=print_progress)
    print()
    print(f"Created {len(report.created)} record(s); {len(report.failed)} run(s) failed ({report.reason})")
    for run in report.failed:
        print(f"  failed: floors {run[0]}-{run[-1]}")

    if args.digests and turns:
        created = await engine.digests.run_once(turns, turns[-1].floor)
        print(f"Created {len(created)} digest(s)")

    if args.export_path:
        args.export_path.write_text(
            json.dumps(engine.store.export_records(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        print(f"Exported {len(engine.store)} record(s) to {args.export_path}")


if __name__ == "__main__":
    asyncio.run(main())
