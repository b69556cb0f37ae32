# summary_db.py
import json
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from chronicler.summarization.summary_cache import SummaryRecord, SummaryType

DEFAULT_DB = Path(__file__).resolve().with_name("summaries.db")
DB_PATH = Path(os.getenv("SUMMARY_DB_PATH", str(DEFAULT_DB))).expanduser()


class SqliteRecordBackend:
    """Persist summary records in a sqlite table, one row per record identity.

    Several transcripts can share one database file; rows are scoped by
    ``session_id``.
    """

    def __init__(self, db_path: str | Path = DB_PATH, session_id: str = "default"):
        self.db_path = str(db_path)
        self.session_id = session_id
        Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()

    @contextmanager
    def _get_connection(self, row_factory: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection that commits on success."""
        conn = sqlite3.connect(self.db_path)
        try:
            if row_factory:
                conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _create_tables(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS summary_records (
                    session_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    identity_floor INTEGER NOT NULL,
                    covered_floors TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    calendar_key TEXT,
                    PRIMARY KEY (session_id, type, identity_floor)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_summary_records_day
                ON summary_records(session_id, calendar_key)
                """
            )

    def load(self) -> list[SummaryRecord]:
        """Return every record of this session ordered by identity floor."""
        with self._get_connection(row_factory=True) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM summary_records
                WHERE session_id = ?
                ORDER BY identity_floor ASC, type ASC
                """,
                (self.session_id,),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def save(self, record: SummaryRecord) -> None:
        data = record.to_dict()
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO summary_records
                (session_id, type, identity_floor, covered_floors, content, created_at, calendar_key)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self.session_id,
                    data["type"],
                    data["identityFloor"],
                    json.dumps(data["coveredFloors"]),
                    data["content"],
                    data["createdAt"],
                    data.get("calendarKey"),
                ),
            )

    def delete(self, summary_type: SummaryType, identity_floor: int) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                DELETE FROM summary_records
                WHERE session_id = ? AND type = ? AND identity_floor = ?
                """,
                (self.session_id, SummaryType.parse(summary_type).value, identity_floor),
            )

    def _row_to_record(self, row: sqlite3.Row) -> SummaryRecord:
        return SummaryRecord.from_dict(
            {
                "type": row["type"],
                "identityFloor": row["identity_floor"],
                "coveredFloors": json.loads(row["covered_floors"]),
                "content": row["content"],
                "createdAt": row["created_at"],
                "calendarKey": row["calendar_key"],
            }
        )
