from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Hashable, Iterable, Sequence

from .models import Category, CategoryEstimate, DurationEstimate, Sample

DAY_GAP_CAP_MINUTES = 5.0

PartitionKey = Callable[[Sample], Hashable]


@dataclass(frozen=True)
class GapPolicy:
    """How successor gaps turn into minutes.

    Gaps up to ``cap_minutes`` are credited as-is to the earlier sample's
    category; longer gaps and the last sample of a partition get
    ``fallback_minutes`` instead.
    """

    cap_minutes: float
    fallback_minutes: float


def day_policy(interval_minutes: float) -> GapPolicy:
    return GapPolicy(
        cap_minutes=DAY_GAP_CAP_MINUTES,
        fallback_minutes=min(float(interval_minutes), DAY_GAP_CAP_MINUTES),
    )


def year_policy(interval_minutes: float) -> GapPolicy:
    interval = float(interval_minutes)
    return GapPolicy(cap_minutes=interval, fallback_minutes=interval)


def eligible_samples(samples: Iterable[Sample]) -> list[Sample]:
    kept = [sample for sample in samples if sample.category is not Category.UNKNOWN]
    # sorted() is stable, so equal timestamps keep their read order.
    return sorted(kept, key=lambda sample: sample.timestamp)


def estimate_durations(
    samples: Iterable[Sample],
    policy: GapPolicy,
    partition: PartitionKey | None = None,
) -> DurationEstimate:
    ordered = eligible_samples(samples)
    if not ordered:
        return DurationEstimate.empty()

    counts = {category: 0 for category in Category.tracked()}
    minutes = {category: 0.0 for category in Category.tracked()}

    for index, sample in enumerate(ordered):
        counts[sample.category] += 1
        successor = _successor(ordered, index, partition)
        next_timestamp = successor.timestamp if successor is not None else None
        minutes[sample.category] += _segment_minutes(sample.timestamp, next_timestamp, policy)

    return build_estimate(counts, minutes)


def build_estimate(counts: dict[Category, int], minutes: dict[Category, float]) -> DurationEstimate:
    total = sum(counts.values())
    categories: dict[Category, CategoryEstimate] = {}
    for category in Category.tracked():
        count = counts.get(category, 0)
        categories[category] = CategoryEstimate(
            count=count,
            minutes=minutes.get(category, 0.0),
            percentage=(count / total) * 100 if total > 0 else 0.0,
        )
    return DurationEstimate(categories=categories, total_samples=total)


def local_day_key(timestamp: datetime) -> str:
    return timestamp.astimezone().strftime("%Y-%m-%d")


def local_month_key(timestamp: datetime) -> str:
    return timestamp.astimezone().strftime("%Y-%m")


def format_duration(total_minutes: float) -> str:
    minutes = max(0, int(round(total_minutes)))
    hours, mins = divmod(minutes, 60)

    if hours:
        return f"{hours}h {mins:02d}m"
    return f"{mins}m"


def _successor(
    ordered: Sequence[Sample],
    index: int,
    partition: PartitionKey | None,
) -> Sample | None:
    if index + 1 >= len(ordered):
        return None
    following = ordered[index + 1]
    if partition is not None and partition(following) != partition(ordered[index]):
        return None
    return following


def _segment_minutes(
    start: datetime,
    next_timestamp: datetime | None,
    policy: GapPolicy,
) -> float:
    if next_timestamp is None:
        return policy.fallback_minutes

    delta = abs((next_timestamp - start).total_seconds()) / 60
    if delta <= policy.cap_minutes:
        return delta
    return policy.fallback_minutes
