"""Aggregate metrics over scored, labeled transactions."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .features import local_timestamp
from .schemas import AggregateMetrics, CategoryBreakdown, CategoryField, ReasonCount, ScoredTransaction, TimeSeriesPoint

UNKNOWN_CATEGORY = "unknown"
FRAUD_SOURCES = ("rule", "model")


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def compute_metrics(scored: Sequence[ScoredTransaction]) -> AggregateMetrics:
    """Confusion-matrix counts, precision, recall and fraud rate.

    Every ratio with a zero denominator is reported as 0.
    """

    total = len(scored)
    predicted = [s for s in scored if s.is_fraud_predicted]
    reported = sum(1 for s in scored if s.is_fraud_reported)

    true_positives = sum(1 for s in predicted if s.is_fraud_reported)
    false_positives = len(predicted) - true_positives
    false_negatives = sum(1 for s in scored if s.is_fraud_reported and not s.is_fraud_predicted)

    return AggregateMetrics(
        total_transactions=total,
        fraudulent_transactions=reported,
        fraud_percentage=_ratio(reported * 100, total),
        average_fraud_score=_ratio(sum(s.fraud_score for s in predicted), len(predicted)),
        false_positives=false_positives,
        false_negatives=false_negatives,
        precision=_ratio(true_positives, true_positives + false_positives),
        recall=_ratio(true_positives, true_positives + false_negatives),
        true_positives=true_positives,
        predicted_fraud=len(predicted),
    )


def group_by_category(scored: Sequence[ScoredTransaction], field: CategoryField) -> List[CategoryBreakdown]:
    """Predicted and reported counts per distinct value of ``field``.

    Categories appear in order of first occurrence; transactions without a
    value fall into ``"unknown"``.
    """

    if not scored:
        return []

    field = CategoryField(field)
    frame = pd.DataFrame(
        {
            "category": [s.transaction.category(field) for s in scored],
            "predicted": [bool(s.is_fraud_predicted) for s in scored],
            "reported": [bool(s.is_fraud_reported) for s in scored],
        }
    )
    frame["category"] = frame["category"].fillna(UNKNOWN_CATEGORY).astype(str)
    grouped = frame.groupby("category", sort=False).agg(
        predicted=("predicted", "sum"),
        reported=("reported", "sum"),
        total=("predicted", "size"),
    )
    return [
        CategoryBreakdown(
            category=category,
            predicted_count=int(row.predicted),
            reported_count=int(row.reported),
            total=int(row.total),
        )
        for category, row in grouped.iterrows()
    ]


def group_by_source(scored: Sequence[ScoredTransaction]) -> Dict[str, int]:
    """Predicted-fraud counts per fraud source; every known source is present."""

    counts = dict.fromkeys(FRAUD_SOURCES, 0)
    for s in scored:
        if s.is_fraud_predicted and s.fraud_source in counts:
            counts[s.fraud_source] += 1
    return counts


def top_reasons(scored: Sequence[ScoredTransaction], limit: int = 5) -> List[ReasonCount]:
    """Most frequent reason strings among predicted fraud, most common first.

    Ties keep first-occurrence order.
    """

    if limit <= 0:
        return []
    counts = Counter(s.fraud_reason for s in scored if s.is_fraud_predicted and s.fraud_reason)
    return [ReasonCount(reason=reason, count=count) for reason, count in counts.most_common(limit)]


def rollup_by_day(
    scored: Sequence[ScoredTransaction],
    window_days: int,
    today: Optional[date] = None,
    timezone: str = "UTC",
) -> List[TimeSeriesPoint]:
    """Daily predicted/reported counts for the trailing ``window_days`` days.

    The window ends on ``today`` (in ``timezone``) and is returned oldest
    first, with zero-filled days. Transactions are bucketed by their calendar
    date in ``timezone``; those outside the window or without a usable
    timestamp are ignored.
    """

    if window_days <= 0:
        return []
    if today is None:
        today = pd.Timestamp.now(tz=timezone).date()
    elif isinstance(today, datetime):
        today = today.date()

    days = [today - timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]
    buckets = {day: [0, 0, 0] for day in days}

    for s in scored:
        ts = local_timestamp(s.transaction.timestamp, timezone)
        if ts is None:
            continue
        bucket = buckets.get(ts.date())
        if bucket is None:
            continue
        bucket[0] += int(bool(s.is_fraud_predicted))
        bucket[1] += int(bool(s.is_fraud_reported))
        bucket[2] += 1

    return [
        TimeSeriesPoint(date=day.isoformat(), predicted=predicted, reported=reported, count=count)
        for day, (predicted, reported, count) in buckets.items()
    ]
