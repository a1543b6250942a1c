from __future__ import annotations

import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from whatdidido.database import ActivityDatabase
from whatdidido.models import Category
from whatdidido.rollups import day_window


class DatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = ActivityDatabase(Path(self._tmp.name) / "whatdidido.sqlite3")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_insert_and_query_samples(self) -> None:
        ts = datetime(2026, 1, 2, 10, 15, 0).astimezone()
        sample_id = self.db.insert_sample(
            timestamp=ts,
            category=Category.WORK,
            label="  editing code ",
            description="Working on the scheduler.",
            image_path=Path("thumbs/shot.jpg"),
        )

        start, end = day_window(date(2026, 1, 2))
        rows = self.db.query_samples(start, end)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].id, sample_id)
        self.assertEqual(rows[0].category, Category.WORK)
        self.assertEqual(rows[0].label, "editing code")
        self.assertEqual(rows[0].timestamp, ts)
        self.assertEqual(rows[0].image_path, str(Path("thumbs/shot.jpg")))

    def test_query_is_half_open_and_ordered(self) -> None:
        base = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)
        self.db.insert_sample(base + timedelta(minutes=2), Category.LEARN, "b")
        self.db.insert_sample(base, Category.WORK, "a")
        self.db.insert_sample(base + timedelta(minutes=5), Category.SOCIAL, "c")

        rows = self.db.query_samples(base, base + timedelta(minutes=5))
        self.assertEqual([row.label for row in rows], ["a", "b"])
        self.assertEqual(self.db.count_samples_in_range(base, base + timedelta(minutes=6)), 3)

    def test_recent_samples_newest_first(self) -> None:
        base = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)
        for minute in range(5):
            self.db.insert_sample(base + timedelta(minutes=minute), Category.OTHER, f"s{minute}")
        recent = self.db.list_recent_samples(limit=2)
        self.assertEqual([row.label for row in recent], ["s4", "s3"])

    def test_delete_sample(self) -> None:
        sample_id = self.db.insert_sample(datetime.now(timezone.utc), Category.UNKNOWN, "failed")
        self.assertTrue(self.db.delete_sample(sample_id))
        self.assertFalse(self.db.delete_sample(sample_id))

    def test_notes_crud(self) -> None:
        day = date(2026, 2, 11)
        first = self.db.save_note(day, "Morning focus", datetime(2026, 2, 11, 9, 0).astimezone())
        second = self.db.save_note(day, "Afternoon slump", datetime(2026, 2, 11, 15, 0).astimezone())
        self.db.save_note(date(2026, 2, 12), "Next day")

        notes = self.db.list_notes_for_day(day)
        self.assertEqual([note.id for note in notes], [second, first])

        self.assertTrue(self.db.update_note(first, " Deep work "))
        in_range = self.db.list_notes_in_range(date(2026, 2, 1), day)
        self.assertEqual({note.content for note in in_range}, {"Deep work", "Afternoon slump"})

        self.assertTrue(self.db.delete_note(second))
        self.assertEqual(len(self.db.list_notes_for_day(day)), 1)

    def test_day_analysis_returns_latest(self) -> None:
        day = date(2026, 2, 11)
        self.assertIsNone(self.db.get_day_analysis(day))
        self.db.save_day_analysis(day, "first draft", datetime(2026, 2, 11, 12, 0).astimezone())
        latest = self.db.save_day_analysis(day, "final", datetime(2026, 2, 11, 18, 0).astimezone())

        analysis = self.db.get_day_analysis(day)
        self.assertIsNotNone(analysis)
        self.assertEqual(analysis.id, latest)
        self.assertEqual(analysis.content, "final")

        self.assertTrue(self.db.update_analysis(latest, "edited"))
        self.assertEqual(self.db.get_day_analysis(day).content, "edited")
        self.assertEqual(len(self.db.list_analyses_in_range(day, day)), 2)
        self.assertTrue(self.db.delete_analysis(latest))
        self.assertEqual(self.db.get_day_analysis(day).content, "first draft")

    def test_settings_round_trip(self) -> None:
        self.db.set_setting("interval_minutes", "12")
        self.assertEqual(self.db.get_setting("interval_minutes"), "12")
        self.assertEqual(self.db.get_setting_float("interval_minutes", 1.0), 12.0)

        self.db.set_setting("interval_minutes", "not-a-number")
        self.assertEqual(self.db.get_setting_float("interval_minutes", 1.0), 1.0)
        self.assertEqual(self.db.get_setting("missing", "fallback"), "fallback")

    def test_unknown_stored_category_reads_as_unknown(self) -> None:
        ts = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
        with self.db._connection() as conn:
            conn.execute(
                "INSERT INTO samples(timestamp_ms, category, label, created_at) VALUES (?, ?, ?, ?)",
                (int(ts.timestamp() * 1000), "GAMING", "legacy", "2026-03-01"),
            )
            conn.commit()
        rows = self.db.query_samples(ts, ts + timedelta(seconds=1))
        self.assertEqual(rows[0].category, Category.UNKNOWN)


if __name__ == "__main__":
    unittest.main()
