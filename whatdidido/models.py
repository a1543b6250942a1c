from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class Category(str, Enum):
    WORK = "WORK"
    LEARN = "LEARN"
    SOCIAL = "SOCIAL"
    ENTERTAINMENT = "ENTERTAINMENT"
    OTHER = "OTHER"
    # Failed capture or classification; never counted in rollups.
    UNKNOWN = "UNKNOWN"

    @classmethod
    def tracked(cls) -> tuple["Category", ...]:
        return tuple(member for member in cls if member is not cls.UNKNOWN)

    @classmethod
    def parse(cls, value: str) -> "Category":
        text = str(value or "").strip().upper()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown category: {value!r}")


@dataclass(frozen=True)
class Sample:
    id: int
    timestamp: datetime
    category: Category
    label: str
    description: str | None = None
    image_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "category": self.category.value,
            "label": self.label,
            "description": self.description,
            "image_path": self.image_path,
        }


@dataclass(frozen=True)
class Note:
    id: int
    day: str
    timestamp: datetime
    content: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "day": self.day,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class DayAnalysis:
    id: int
    day: str
    timestamp: datetime
    content: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "day": self.day,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Classification:
    category: Category
    label: str
    description: str


@dataclass(frozen=True)
class SchedulerStatus:
    running: bool
    interval_minutes: float


@dataclass(frozen=True)
class CategoryEstimate:
    count: int = 0
    minutes: float = 0.0
    percentage: float = 0.0

    @property
    def hours(self) -> float:
        return self.minutes / 60


@dataclass(frozen=True)
class DurationEstimate:
    """Per-category sample counts and estimated minutes for one window."""

    categories: dict[Category, CategoryEstimate]
    total_samples: int = 0

    @classmethod
    def empty(cls) -> "DurationEstimate":
        return cls({category: CategoryEstimate() for category in Category.tracked()}, 0)

    def percentages(self) -> dict[Category, float]:
        return {category: est.percentage for category, est in self.categories.items()}

    def hours(self) -> dict[Category, float]:
        return {category: est.hours for category, est in self.categories.items()}

    def minutes(self) -> dict[Category, float]:
        return {category: est.minutes for category, est in self.categories.items()}

    def counts(self) -> dict[Category, int]:
        return {category: est.count for category, est in self.categories.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentages": _by_value(self.percentages()),
            "time_in_hours": _by_value(self.hours()),
            "category_minutes": _by_value(self.minutes()),
            "category_counts": _by_value(self.counts()),
            "total_samples": self.total_samples,
        }


@dataclass(frozen=True)
class DayRollup:
    day: date
    estimate: DurationEstimate
    screenshots: list[Sample] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    day_analysis: DayAnalysis | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "stats": _by_value(self.estimate.percentages()),
            "time_in_hours": _by_value(self.estimate.hours()),
            "total_samples": self.estimate.total_samples,
            "screenshots": [sample.to_dict() for sample in self.screenshots],
            "notes": [note.to_dict() for note in self.notes],
            "day_analysis": self.day_analysis.to_dict() if self.day_analysis else None,
        }


@dataclass(frozen=True)
class MonthRollup:
    month: str
    estimate: DurationEstimate
    days_with_data: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "monthly_averages": _by_value(self.estimate.percentages()),
            "monthly_time_in_hours": _by_value(self.estimate.hours()),
            "days_with_data": self.days_with_data,
        }


@dataclass(frozen=True)
class MonthSummary:
    estimate: DurationEstimate
    days_with_data: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentages": _by_value(self.estimate.percentages()),
            "time_in_hours": _by_value(self.estimate.hours()),
            "days_with_data": self.days_with_data,
        }


@dataclass(frozen=True)
class YearRollup:
    year: int
    months: dict[str, MonthSummary]
    top_categories: list[Category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "data": {month: summary.to_dict() for month, summary in self.months.items()},
            "top_categories": [category.value for category in self.top_categories],
        }


@dataclass(frozen=True)
class ExportStats:
    daily_stats: dict[str, DurationEstimate]
    monthly_stats: dict[str, MonthRollup]

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_stats": {day: est.to_dict() for day, est in self.daily_stats.items()},
            "monthly_stats": {month: roll.to_dict() for month, roll in self.monthly_stats.items()},
        }


@dataclass(frozen=True)
class DataExport:
    """Raw samples plus statistics for a date range, as written by ``export``."""

    start: date
    end: date
    exported_at: datetime
    samples: list[Sample]
    statistics: ExportStats
    version: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": {
                "export_date": self.exported_at.isoformat(timespec="seconds"),
                "date_range": {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()},
                "screenshot_count": len(self.samples),
                "categories": [category.value for category in Category.tracked()],
                "version": self.version,
            },
            "screenshots": [
                {
                    "id": sample.id,
                    "timestamp": sample.timestamp.isoformat(timespec="milliseconds"),
                    "category": sample.category.value,
                    "activity": sample.label,
                    "description": sample.description,
                }
                for sample in self.samples
            ],
            "statistics": self.statistics.to_dict(),
        }


def _by_value(values: dict[Category, Any]) -> dict[str, Any]:
    return {category.value: value for category, value in values.items()}
