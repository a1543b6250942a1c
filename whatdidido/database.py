from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path

from .models import Category, DayAnalysis, Note, Sample


class ActivityDatabase:
    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_file

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_ms INTEGER NOT NULL,
                    category TEXT NOT NULL,
                    label TEXT NOT NULL DEFAULT '',
                    description TEXT,
                    image_path TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_samples_timestamp
                ON samples(timestamp_ms);

                CREATE INDEX IF NOT EXISTS idx_samples_timestamp_category
                ON samples(timestamp_ms, category);

                CREATE TABLE IF NOT EXISTS notes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    day TEXT NOT NULL,
                    timestamp_ms INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notes_day
                ON notes(day);

                CREATE TABLE IF NOT EXISTS day_analyses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    day TEXT NOT NULL,
                    timestamp_ms INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_day_analyses_day
                ON day_analyses(day);

                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    # Samples

    def insert_sample(
        self,
        timestamp: datetime,
        category: Category,
        label: str,
        description: str | None = None,
        image_path: Path | str | None = None,
    ) -> int:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO samples(
                    timestamp_ms,
                    category,
                    label,
                    description,
                    image_path,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    _to_ms(timestamp),
                    Category(category).value,
                    (label or "").strip(),
                    description,
                    str(image_path) if image_path else None,
                    _now_stamp(),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def delete_sample(self, sample_id: int) -> bool:
        with self._lock, self._connection() as conn:
            cursor = conn.execute("DELETE FROM samples WHERE id = ?", (int(sample_id),))
            conn.commit()
            return cursor.rowcount > 0

    def query_samples(self, start: datetime, end: datetime) -> list[Sample]:
        """Samples with ``start <= timestamp < end``, oldest first."""
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, timestamp_ms, category, label, description, image_path
                FROM samples
                WHERE timestamp_ms >= ? AND timestamp_ms < ?
                ORDER BY timestamp_ms ASC, id ASC
                """,
                (_to_ms(start), _to_ms(end)),
            ).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def list_recent_samples(self, limit: int = 20) -> list[Sample]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, timestamp_ms, category, label, description, image_path
                FROM samples
                ORDER BY timestamp_ms DESC, id DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def count_samples_in_range(self, start: datetime, end: datetime) -> int:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total
                FROM samples
                WHERE timestamp_ms >= ? AND timestamp_ms < ?
                """,
                (_to_ms(start), _to_ms(end)),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    # Notes

    def save_note(self, day: date, content: str, timestamp: datetime | None = None) -> int:
        now = _now_stamp()
        moment = timestamp or datetime.now().astimezone()
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notes(day, timestamp_ms, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (day.isoformat(), _to_ms(moment), content.strip(), now, now),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_notes_for_day(self, day: date) -> list[Note]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, day, timestamp_ms, content, created_at, updated_at
                FROM notes
                WHERE day = ?
                ORDER BY timestamp_ms DESC, id DESC
                """,
                (day.isoformat(),),
            ).fetchall()
        return [self._row_to_note(row) for row in rows]

    def list_notes_in_range(self, start_day: date, end_day: date) -> list[Note]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, day, timestamp_ms, content, created_at, updated_at
                FROM notes
                WHERE day BETWEEN ? AND ?
                ORDER BY day DESC, timestamp_ms DESC
                """,
                (start_day.isoformat(), end_day.isoformat()),
            ).fetchall()
        return [self._row_to_note(row) for row in rows]

    def update_note(self, note_id: int, content: str) -> bool:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                "UPDATE notes SET content = ?, updated_at = ? WHERE id = ?",
                (content.strip(), _now_stamp(), int(note_id)),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_note(self, note_id: int) -> bool:
        with self._lock, self._connection() as conn:
            cursor = conn.execute("DELETE FROM notes WHERE id = ?", (int(note_id),))
            conn.commit()
            return cursor.rowcount > 0

    # Day analyses

    def save_day_analysis(self, day: date, content: str, timestamp: datetime | None = None) -> int:
        moment = timestamp or datetime.now().astimezone()
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO day_analyses(day, timestamp_ms, content, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (day.isoformat(), _to_ms(moment), content.strip(), _now_stamp()),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_day_analysis(self, day: date) -> DayAnalysis | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                """
                SELECT id, day, timestamp_ms, content, created_at
                FROM day_analyses
                WHERE day = ?
                ORDER BY timestamp_ms DESC, id DESC
                LIMIT 1
                """,
                (day.isoformat(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_analysis(row)

    def list_analyses_in_range(self, start_day: date, end_day: date) -> list[DayAnalysis]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, day, timestamp_ms, content, created_at
                FROM day_analyses
                WHERE day BETWEEN ? AND ?
                ORDER BY day DESC, timestamp_ms DESC
                """,
                (start_day.isoformat(), end_day.isoformat()),
            ).fetchall()
        return [self._row_to_analysis(row) for row in rows]

    def update_analysis(self, analysis_id: int, content: str) -> bool:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                "UPDATE day_analyses SET content = ? WHERE id = ?",
                (content.strip(), int(analysis_id)),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_analysis(self, analysis_id: int) -> bool:
        with self._lock, self._connection() as conn:
            cursor = conn.execute("DELETE FROM day_analyses WHERE id = ?", (int(analysis_id),))
            conn.commit()
            return cursor.rowcount > 0

    # Settings

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def get_setting_float(self, key: str, default: float) -> float:
        value = self.get_setting(key)
        if value is None:
            return default
        try:
            parsed = float(value)
        except ValueError:
            return default
        if parsed <= 0:
            return default
        return parsed

    def set_setting(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> Sample:
        try:
            category = Category.parse(str(row["category"]))
        except ValueError:
            category = Category.UNKNOWN

        return Sample(
            id=int(row["id"]),
            timestamp=_from_ms(int(row["timestamp_ms"])),
            category=category,
            label=str(row["label"]),
            description=row["description"],
            image_path=row["image_path"],
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            id=int(row["id"]),
            day=str(row["day"]),
            timestamp=_from_ms(int(row["timestamp_ms"])),
            content=str(row["content"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    @staticmethod
    def _row_to_analysis(row: sqlite3.Row) -> DayAnalysis:
        return DayAnalysis(
            id=int(row["id"]),
            day=str(row["day"]),
            timestamp=_from_ms(int(row["timestamp_ms"])),
            content=str(row["content"]),
            created_at=str(row["created_at"]),
        )


def _to_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return int(round(moment.timestamp() * 1000))


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone()


def _now_stamp() -> str:
    return datetime.now().astimezone().isoformat()
