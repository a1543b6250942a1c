from __future__ import annotations

import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from PIL import Image

from whatdidido.capture import ScreenCapture
from whatdidido.database import ActivityDatabase
from whatdidido.errors import ClassificationError
from whatdidido.models import Category, Classification
from whatdidido.rollups import RollupAggregator, day_window
from whatdidido.sampling import UNKNOWN_LABEL, DayAnalysisTask, SamplingTask


class FakeClassifier:
    def __init__(self, result: Classification | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[bytes, list]] = []
        self.reports: list[dict] = []

    def classify(self, image_bytes, recent=()):
        self.calls.append((image_bytes, list(recent)))
        if self.error is not None:
            raise self.error
        return self.result

    def write_day_analysis(self, **kwargs):
        self.reports.append(kwargs)
        return "## My Day\nMostly coding."


class SamplingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.db = ActivityDatabase(root / "whatdidido.sqlite3")
        self.now = datetime(2026, 5, 4, 10, 30, 0).astimezone()
        self.capture = ScreenCapture(
            thumbnails_root=root / "thumbnails",
            grabber=lambda: Image.new("RGBA", (2400, 1200), (20, 40, 60, 255)),
            clock=lambda: self.now,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _samples_today(self):
        start, end = day_window(self.now.date())
        return self.db.query_samples(start, end)

    def test_capture_writes_thumbnail_and_jpeg(self) -> None:
        screen = self.capture.grab()
        self.assertTrue(screen.thumbnail_path.exists())
        self.assertEqual(screen.thumbnail_path.parent.name, "2026-05-04")
        self.assertTrue(screen.image_bytes.startswith(b"\xff\xd8"))
        with Image.open(screen.thumbnail_path) as thumb:
            self.assertLessEqual(thumb.width, 480)

    def test_sampling_task_stores_classified_sample(self) -> None:
        classifier = FakeClassifier(Classification(Category.WORK, "reviewing a pull request", "GitHub diff"))
        task = SamplingTask(self.db, self.capture, classifier)

        sample_id = task()
        rows = self._samples_today()
        self.assertEqual([row.id for row in rows], [sample_id])
        self.assertEqual(rows[0].category, Category.WORK)
        self.assertEqual(rows[0].description, "GitHub diff")
        self.assertTrue(rows[0].image_path.endswith(".jpg"))

    def test_recent_history_is_passed_to_classifier(self) -> None:
        self.db.insert_sample(datetime(2026, 5, 4, 10, 29).astimezone(), Category.LEARN, "course video")
        classifier = FakeClassifier(Classification(Category.LEARN, "course video", "Lecture"))
        SamplingTask(self.db, self.capture, classifier)()
        _, recent = classifier.calls[0]
        self.assertEqual([row.label for row in recent], ["course video"])

    def test_classification_failure_propagates(self) -> None:
        classifier = FakeClassifier(error=ClassificationError("bad response"))
        task = SamplingTask(self.db, self.capture, classifier)
        with self.assertRaises(ClassificationError):
            task()
        self.assertEqual(self._samples_today(), [])

    def test_keep_unknown_stores_placeholder(self) -> None:
        classifier = FakeClassifier(error=ClassificationError("bad response"))
        task = SamplingTask(self.db, self.capture, classifier, keep_unknown=True)
        with self.assertLogs("whatdidido.sampling", level="WARNING"):
            task()
        rows = self._samples_today()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].category, Category.UNKNOWN)
        self.assertEqual(rows[0].label, UNKNOWN_LABEL)


class DayAnalysisTaskTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = ActivityDatabase(Path(self._tmp.name) / "whatdidido.sqlite3")
        self.aggregator = RollupAggregator(self.db, self.db, self.db)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_generates_and_saves_report(self) -> None:
        day = date(2026, 5, 4)
        self.db.insert_sample(datetime(2026, 5, 4, 9, 0).astimezone(), Category.WORK, "coding")
        self.db.insert_sample(datetime(2026, 5, 2, 9, 0).astimezone(), Category.SOCIAL, "call")
        self.db.save_note(day, "Shipped the release")
        self.db.save_note(date(2026, 5, 1), "Planning")
        self.db.save_day_analysis(date(2026, 5, 3), "Yesterday's report")

        classifier = FakeClassifier()
        clock = lambda: datetime(2026, 5, 4, 18, 0).astimezone()
        analysis_id = DayAnalysisTask(self.db, self.aggregator, classifier, clock=clock)()

        stored = self.db.get_day_analysis(day)
        self.assertEqual(stored.id, analysis_id)
        self.assertIn("Mostly coding.", stored.content)

        report = classifier.reports[0]
        self.assertEqual(report["day"], day)
        self.assertEqual([row.label for row in report["samples"]], ["coding"])
        self.assertEqual([note.content for note in report["notes"]], ["Shipped the release"])
        self.assertEqual(sorted(report["daily_stats"]), ["2026-05-02", "2026-05-04"])
        self.assertEqual([note.content for note in report["previous_notes"]], ["Planning"])
        self.assertEqual([a.content for a in report["previous_analyses"]], ["Yesterday's report"])

    def test_first_of_month_has_no_history(self) -> None:
        classifier = FakeClassifier()
        task = DayAnalysisTask(self.db, self.aggregator, classifier)
        task.generate(date(2026, 6, 1))
        self.assertEqual(classifier.reports[0]["previous_notes"], [])
        self.assertEqual(classifier.reports[0]["previous_analyses"], [])


if __name__ == "__main__":
    unittest.main()
