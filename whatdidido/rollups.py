from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Protocol, Sequence

from .errors import AggregationFailed, SidebandFetchFailed
from .estimator import (
    day_policy,
    eligible_samples,
    estimate_durations,
    local_day_key,
    local_month_key,
    year_policy,
)
from .models import (
    Category,
    DataExport,
    DayAnalysis,
    DayRollup,
    DurationEstimate,
    ExportStats,
    MonthRollup,
    MonthSummary,
    Note,
    Sample,
    YearRollup,
)

TOP_CATEGORY_COUNT = 3
DEFAULT_SCREENSHOT_LIMIT = 100


class SampleStore(Protocol):
    def query_samples(self, start: datetime, end: datetime) -> list[Sample]: ...


class NoteSource(Protocol):
    def list_notes_for_day(self, day: date) -> list[Note]: ...


class AnalysisSource(Protocol):
    def get_day_analysis(self, day: date) -> DayAnalysis | None: ...


def day_window(day: date) -> tuple[datetime, datetime]:
    return _local_midnight(day), _local_midnight(day + timedelta(days=1))


def month_window(reference: date) -> tuple[datetime, datetime]:
    first = reference.replace(day=1)
    return _local_midnight(first), _local_midnight(_next_month(first))


def year_window(year: int) -> tuple[datetime, datetime]:
    return _local_midnight(date(year, 1, 1)), _local_midnight(date(year + 1, 1, 1))


class RollupAggregator:
    """Day, month and year rollups over the sample store.

    Callers always pass the reference date and sampling interval; nothing here
    looks at the current time. Sample store failures surface as
    ``AggregationFailed``; the day rollup's notes and analysis are best-effort.
    """

    def __init__(
        self,
        store: SampleStore,
        notes: NoteSource | None = None,
        analyses: AnalysisSource | None = None,
        logger: logging.Logger | None = None,
        max_workers: int = 2,
    ):
        self._store = store
        self._notes = notes
        self._analyses = analyses
        self._logger = logger or logging.getLogger(__name__)
        self._max_workers = max(1, int(max_workers))

    def day_rollup(
        self,
        day: date,
        interval_minutes: float,
        screenshot_limit: int = DEFAULT_SCREENSHOT_LIMIT,
    ) -> DayRollup:
        start, end = day_window(day)
        samples = self._query(start, end)
        self._logger.debug("Calculating stats for %s from %d samples", day.isoformat(), len(samples))

        estimate = estimate_durations(samples, day_policy(interval_minutes))
        newest_first = list(reversed(eligible_samples(samples)))
        notes, analysis = self._fetch_sideband(day)

        return DayRollup(
            day=day,
            estimate=estimate,
            screenshots=newest_first[: max(0, int(screenshot_limit))],
            notes=notes,
            day_analysis=analysis,
        )

    def monthly_averages(self, reference: date, interval_minutes: float) -> MonthRollup:
        start, end = month_window(reference)
        return self._month_rollup(reference, self._query(start, end), interval_minutes)

    def daily_stats_for_month(self, reference: date, interval_minutes: float) -> dict[str, DurationEstimate]:
        start, end = month_window(reference)
        return self._daily_stats(self._query(start, end), interval_minutes)

    def yearly_monthly_stats(self, year: int, interval_minutes: float) -> YearRollup:
        start, end = year_window(year)
        by_month = _group(eligible_samples(self._query(start, end)), _sample_month_key)
        policy = year_policy(interval_minutes)

        months: dict[str, MonthSummary] = {}
        overall: dict[Category, float] = {}
        for month in sorted(by_month):
            rows = by_month[month]
            estimate = estimate_durations(rows, policy, partition=_sample_day_key)
            months[month] = MonthSummary(
                estimate=estimate,
                days_with_data=len({_sample_day_key(row) for row in rows}),
            )
            for category, est in estimate.categories.items():
                if est.minutes > 0:
                    overall[category] = overall.get(category, 0.0) + est.minutes

        ranked = sorted(overall.items(), key=lambda item: item[1], reverse=True)
        top = [category for category, _ in ranked[:TOP_CATEGORY_COUNT]]
        return YearRollup(year=year, months=months, top_categories=top)

    def export_stats(self, start: date, end: date, interval_minutes: float = 5) -> ExportStats:
        if end < start:
            start, end = end, start

        daily: dict[str, DurationEstimate] = {}
        monthly: dict[str, MonthRollup] = {}
        cursor = start.replace(day=1)
        while cursor <= end:
            window_start, window_end = month_window(cursor)
            samples = self._query(window_start, window_end)
            rollup = self._month_rollup(cursor, samples, interval_minutes)
            monthly[rollup.month] = rollup
            for day_key, estimate in self._daily_stats(samples, interval_minutes).items():
                if start.isoformat() <= day_key <= end.isoformat():
                    daily[day_key] = estimate
            cursor = _next_month(cursor)

        return ExportStats(daily_stats=daily, monthly_stats=monthly)

    def export_data(
        self,
        start: date,
        end: date,
        exported_at: datetime,
        interval_minutes: float = 5,
    ) -> DataExport:
        """Eligible samples in ``[start, end]`` newest first, with export stats."""
        if end < start:
            start, end = end, start
        window_start, _ = day_window(start)
        _, window_end = day_window(end)
        samples = list(reversed(eligible_samples(self._query(window_start, window_end))))
        self._logger.info("Exporting %d samples from %s to %s", len(samples), start, end)
        return DataExport(
            start=start,
            end=end,
            exported_at=exported_at,
            samples=samples,
            statistics=self.export_stats(start, end, interval_minutes),
        )

    def count_days_with_data(self, reference: date) -> int:
        start, end = month_window(reference)
        return len({_sample_day_key(row) for row in eligible_samples(self._query(start, end))})

    def count_months_with_data(self, year: int) -> int:
        start, end = year_window(year)
        return len({_sample_month_key(row) for row in eligible_samples(self._query(start, end))})

    def _month_rollup(self, reference: date, samples: Sequence[Sample], interval_minutes: float) -> MonthRollup:
        rows = eligible_samples(samples)
        return MonthRollup(
            month=reference.strftime("%Y-%m"),
            estimate=estimate_durations(rows, day_policy(interval_minutes)),
            days_with_data=len({_sample_day_key(row) for row in rows}),
        )

    def _daily_stats(self, samples: Sequence[Sample], interval_minutes: float) -> dict[str, DurationEstimate]:
        by_day = _group(eligible_samples(samples), _sample_day_key)
        policy = day_policy(interval_minutes)
        return {day_key: estimate_durations(by_day[day_key], policy) for day_key in sorted(by_day)}

    def _query(self, start: datetime, end: datetime) -> list[Sample]:
        try:
            return list(self._store.query_samples(start, end))
        except Exception as exc:
            self._logger.error("Error reading samples between %s and %s: %s", start, end, exc)
            raise AggregationFailed(f"Could not read samples between {start} and {end}: {exc}") from exc

    def _fetch_sideband(self, day: date) -> tuple[list[Note], DayAnalysis | None]:
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="whatdidido-sideband") as pool:
            notes_future = pool.submit(self._load_notes, day)
            analysis_future = pool.submit(self._load_analysis, day)
            notes = self._sideband_result(notes_future, "notes", day, [])
            analysis = self._sideband_result(analysis_future, "day analysis", day, None)
        return notes, analysis

    def _load_notes(self, day: date) -> list[Note]:
        if self._notes is None:
            return []
        return list(self._notes.list_notes_for_day(day))

    def _load_analysis(self, day: date) -> DayAnalysis | None:
        if self._analyses is None:
            return None
        return self._analyses.get_day_analysis(day)

    def _sideband_result(self, future: Future, what: str, day: date, default: Any) -> Any:
        try:
            return future.result()
        except Exception as exc:  # noqa: BLE001
            failure = SidebandFetchFailed(f"Could not load {what} for {day.isoformat()}: {exc}")
            self._logger.error("%s", failure)
            return default


def _sample_day_key(sample: Sample) -> str:
    return local_day_key(sample.timestamp)


def _sample_month_key(sample: Sample) -> str:
    return local_month_key(sample.timestamp)


def _group(samples: Sequence[Sample], key: Callable[[Sample], str]) -> dict[str, list[Sample]]:
    grouped: dict[str, list[Sample]] = {}
    for sample in samples:
        grouped.setdefault(key(sample), []).append(sample)
    return grouped


def _local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min).astimezone()


def _next_month(first: date) -> date:
    if first.month == 12:
        return date(first.year + 1, 1, 1)
    return date(first.year, first.month + 1, 1)
