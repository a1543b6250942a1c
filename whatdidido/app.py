from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Any

from .capture import ScreenCapture
from .classifier import GeminiClassifier
from .database import ActivityDatabase
from .errors import InvalidArgument, InvalidState
from .estimator import eligible_samples
from .paths import database_path, ensure_directories, thumbnails_directory
from .power import PowerMonitor, SleepWatcher
from .rollups import RollupAggregator
from .sampling import DayAnalysisTask, SamplingTask
from .scheduler import Scheduler, TaskOutcome, TimerFactory
from .settings import INTERVAL_SETTING_KEY, load_settings, save_setting

logger = logging.getLogger(__name__)

CHAT_HISTORY_DAYS = 30


class ActivityTracker:
    """Wires storage, capture, classification and the two schedulers together.

    The sampling scheduler captures and classifies a screenshot every
    ``interval_minutes``; the analysis scheduler writes the day report every
    ``analysis_interval_minutes`` and never skips for idleness.
    """

    def __init__(
        self,
        db: ActivityDatabase | None = None,
        *,
        power: PowerMonitor | None = None,
        capture: ScreenCapture | None = None,
        classifier: GeminiClassifier | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ):
        if db is None:
            ensure_directories()
            db = ActivityDatabase(database_path())
        self.db = db
        self.settings = load_settings(db)
        self.power = power or PowerMonitor()
        self.sleep_watcher = SleepWatcher(self.power)
        self.capture = capture or ScreenCapture(thumbnails_directory())
        self.aggregator = RollupAggregator(db, db, db)
        self._classifier = classifier
        self._stop_event = threading.Event()

        self.sampler = Scheduler(
            self.power,
            interval_minutes=self.settings.interval_minutes,
            max_retries=self.settings.max_retries,
            idle_threshold_minutes=self.settings.idle_threshold_minutes,
            name="sampling",
            timer_factory=timer_factory,
        )
        self.analysis_scheduler = Scheduler(
            self.power,
            interval_minutes=self.settings.analysis_interval_minutes,
            max_retries=self.settings.max_retries,
            idle_threshold_minutes=0,
            name="day-analysis",
            timer_factory=timer_factory,
        )

    @property
    def classifier(self) -> GeminiClassifier:
        if self._classifier is None:
            if not self.settings.has_api_key:
                raise InvalidState("No Gemini API key configured. Set gemini_api_key or GEMINI_API_KEY.")
            self._classifier = GeminiClassifier(self.settings.gemini_api_key, self.settings.gemini_model)
        return self._classifier

    def sampling_task(self) -> SamplingTask:
        return SamplingTask(
            self.db,
            self.capture,
            self.classifier,
            keep_unknown=self.settings.keep_unknown,
        )

    def analysis_task(self) -> DayAnalysisTask:
        return DayAnalysisTask(self.db, self.aggregator, self.classifier, clock=self.power.now)

    def start_tracking(self) -> None:
        sampling = self.sampling_task()
        self.sampler.start(sampling)
        if not self.analysis_scheduler.running:
            self.analysis_scheduler.start(self.analysis_task())
        self.sleep_watcher.start()
        logger.info("Tracking started")

    def stop_tracking(self) -> None:
        self.sampler.stop()
        self.analysis_scheduler.stop()
        self.sleep_watcher.stop()
        logger.info("Tracking stopped")

    def update_interval(self, interval_minutes: float) -> None:
        if interval_minutes <= 0:
            raise InvalidArgument("Interval must be a positive number of minutes")
        save_setting(self.db, INTERVAL_SETTING_KEY, f"{interval_minutes:g}")
        self.settings = load_settings(self.db)
        self.sampler.idle_threshold_minutes = self.settings.idle_threshold_minutes
        self.sampler.update_interval(interval_minutes)

    def capture_once(self) -> int:
        return self.sampling_task()()

    def capture_now(self) -> TaskOutcome:
        return self.sampler.execute_now(self.sampling_task())

    def generate_day_analysis(self, day: date) -> int:
        return self.analysis_task().generate(day)

    def chat(self, message: str, reference: datetime) -> str:
        start = reference - timedelta(days=CHAT_HISTORY_DAYS)
        samples = eligible_samples(self.db.query_samples(start, reference))
        logger.info("Answering chat message with %d samples of context", len(samples))
        return self.classifier.chat(message, samples)

    def status(self) -> dict[str, Any]:
        sampling = self.sampler.get_status()
        analysis = self.analysis_scheduler.get_status()
        return {
            "is_running": sampling.running,
            "interval_minutes": sampling.interval_minutes,
            "analysis_running": analysis.running,
            "analysis_interval_minutes": analysis.interval_minutes,
            "has_api_key": self.settings.has_api_key,
            "database": str(self.db.path),
        }

    def run_forever(self) -> None:
        self.start_tracking()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self._stop_event.set()
        self.stop_tracking()
        self.sampler.close()
        self.analysis_scheduler.close()
