"""Reusable pattern checks for rules that look beyond a single reading."""

import re
from datetime import datetime, time, timedelta
from enum import StrEnum

import pandas as pd
from loguru import logger

from alert_engine.rules_engine.application.rule_evaluator import compare_values
from alert_engine.rules_engine.domain.models import ConditionOperator
from alert_engine.shared.domain.models import utcnow


class ChangeDirection(StrEnum):
    """Direction a rate-of-change check looks at."""

    INCREASE = "increase"
    DECREASE = "decrease"
    ANY = "any"


class Aggregation(StrEnum):
    """Aggregations supported by :func:`evaluate_aggregation`."""

    AVG = "avg"
    SUM = "sum"
    COUNT = "count"
    MIN = "min"
    MAX = "max"


def evaluate_between(value: float, minimum: float, maximum: float) -> bool:
    """Inclusive range check."""
    return minimum <= value <= maximum


def evaluate_rate_of_change(
    current: float,
    previous: float,
    threshold_percent: float,
    direction: ChangeDirection = ChangeDirection.ANY,
) -> bool:
    """Whether the percentage change from ``previous`` reaches ``threshold_percent``."""
    if previous == 0:
        return current != 0

    change_percent = (current - previous) / abs(previous) * 100

    if direction == ChangeDirection.INCREASE:
        return change_percent >= threshold_percent
    if direction == ChangeDirection.DECREASE:
        return change_percent <= -threshold_percent
    return abs(change_percent) >= threshold_percent


def evaluate_consecutive_occurrences(occurrences: list[bool], required_count: int) -> bool:
    """True once ``required_count`` consecutive occurrences are seen."""
    run = 0
    for occurred in occurrences:
        run = run + 1 if occurred else 0
        if run >= required_count:
            return True
    return False


def evaluate_time_window(
    event_timestamps: list[datetime],
    window_minutes: float,
    required_count: int,
    now: datetime | None = None,
) -> bool:
    """Whether at least ``required_count`` events fall inside the trailing window."""
    now = now or utcnow()
    window_start = now - timedelta(minutes=window_minutes)
    return sum(1 for ts in event_timestamps if ts >= window_start) >= required_count


def evaluate_aggregation(
    values: list[float],
    aggregation: Aggregation,
    op: ConditionOperator,
    threshold: float,
) -> bool:
    """Aggregate ``values`` and compare the result with ``threshold``."""
    if not values:
        return False

    match aggregation:
        case Aggregation.AVG:
            aggregated = sum(values) / len(values)
        case Aggregation.SUM:
            aggregated = sum(values)
        case Aggregation.COUNT:
            aggregated = len(values)
        case Aggregation.MIN:
            aggregated = min(values)
        case Aggregation.MAX:
            aggregated = max(values)
        case _:
            return False

    return compare_values(aggregated, op, threshold)


def evaluate_regex(value: str, pattern: str) -> bool:
    """Search ``value`` for ``pattern``; an invalid pattern never matches."""
    try:
        return re.search(pattern, value) is not None
    except re.error as e:
        logger.warning(f"Invalid regex pattern {pattern!r}: {e}")
        return False


def evaluate_date_range(moment: datetime, start: datetime, end: datetime) -> bool:
    return start <= moment <= end


def evaluate_time_of_day(moment: datetime, start: str, end: str) -> bool:
    """
    Whether the wall-clock time of ``moment`` falls in ``start``-``end`` (HH:MM).

    Ranges where start is after end wrap past midnight, e.g. 22:00-06:00.
    """
    current = moment.time().replace(second=0, microsecond=0)
    start_time = time.fromisoformat(start)
    end_time = time.fromisoformat(end)

    if start_time > end_time:
        return current >= start_time or current <= end_time
    return start_time <= current <= end_time


def evaluate_absence(
    last_event_time: datetime | None, max_absence_minutes: float, now: datetime | None = None
) -> bool:
    """True when nothing has been seen for at least ``max_absence_minutes``."""
    if last_event_time is None:
        return True
    now = now or utcnow()
    return (now - last_event_time) >= timedelta(minutes=max_absence_minutes)


def evaluate_anomaly(value: float, historical_values: list[float], z_score_threshold: float = 2.0) -> bool:
    """Z-score outlier check; needs at least 10 historical samples."""
    if len(historical_values) < 10:
        return False

    series = pd.Series(historical_values, dtype="float64")
    mean = float(series.mean())
    std_dev = float(series.std(ddof=0))

    if std_dev == 0:
        return value != mean

    return abs(value - mean) / std_dev >= z_score_threshold
