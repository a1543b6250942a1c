from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Protocol, Sequence

from .capture import CapturedScreen
from .database import ActivityDatabase
from .errors import ClassificationError
from .models import Category, Classification, Sample
from .rollups import RollupAggregator, day_window

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "screenshot captured (analysis unavailable)"
UNKNOWN_DESCRIPTION = "No description available due to analysis failure."
HISTORY_SIZE = 20
ANALYSIS_STATS_INTERVAL_MINUTES = 5


class Capturer(Protocol):
    def grab(self) -> CapturedScreen: ...


class Classifier(Protocol):
    def classify(self, image_bytes: bytes, recent: Sequence[Sample] = ()) -> Classification: ...


class SamplingTask:
    """Takes one screenshot, classifies it and stores the resulting sample.

    Raises on any failure so the scheduler can retry. With ``keep_unknown`` a
    classification failure is recorded as an UNKNOWN sample instead.
    """

    def __init__(
        self,
        db: ActivityDatabase,
        capture: Capturer,
        classifier: Classifier,
        keep_unknown: bool = False,
        history_size: int = HISTORY_SIZE,
    ):
        self._db = db
        self._capture = capture
        self._classifier = classifier
        self._keep_unknown = keep_unknown
        self._history_size = history_size

    def __call__(self) -> int:
        screen = self._capture.grab()
        recent = self._db.list_recent_samples(self._history_size)
        try:
            result = self._classifier.classify(screen.image_bytes, recent)
        except ClassificationError as exc:
            if not self._keep_unknown:
                raise
            logger.warning("Classification failed, storing UNKNOWN sample: %s", exc)
            result = Classification(Category.UNKNOWN, UNKNOWN_LABEL, UNKNOWN_DESCRIPTION)

        sample_id = self._db.insert_sample(
            timestamp=screen.captured_at,
            category=result.category,
            label=result.label,
            description=result.description,
            image_path=screen.thumbnail_path,
        )
        logger.info("Stored sample #%d as %s (%s)", sample_id, result.category.value, result.label)
        return sample_id


class DayAnalysisTask:
    """Writes the AI day report for the current day and saves it."""

    def __init__(
        self,
        db: ActivityDatabase,
        aggregator: RollupAggregator,
        classifier,
        clock: Callable[[], datetime] | None = None,
    ):
        self._db = db
        self._aggregator = aggregator
        self._classifier = classifier
        self._clock = clock or (lambda: datetime.now().astimezone())

    def __call__(self) -> int:
        return self.generate(self._clock().date())

    def generate(self, day: date) -> int:
        logger.info("Starting day analysis for %s", day.isoformat())
        start, end = day_window(day)
        samples = self._db.query_samples(start, end)
        notes = self._db.list_notes_for_day(day)
        daily_stats = self._aggregator.daily_stats_for_month(day, ANALYSIS_STATS_INTERVAL_MINUTES)

        month_start = day.replace(day=1)
        previous_notes = []
        previous_analyses = []
        if day > month_start:
            yesterday = day - timedelta(days=1)
            previous_notes = self._db.list_notes_in_range(month_start, yesterday)
            previous_analyses = self._db.list_analyses_in_range(month_start, yesterday)

        content = self._classifier.write_day_analysis(
            day=day,
            samples=samples,
            notes=notes,
            daily_stats=daily_stats,
            previous_notes=previous_notes,
            previous_analyses=previous_analyses,
        )
        if not content.strip():
            raise ClassificationError("Day analysis came back empty.")
        analysis_id = self._db.save_day_analysis(day, content)
        logger.info("Saved day analysis #%d for %s", analysis_id, day.isoformat())
        return analysis_id
