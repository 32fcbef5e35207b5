"""Weekly metric trends with a deterministic fallback for weeks without data.

The fallback is a strategy object so callers (and tests) can swap or disable
it. It is pure: nothing synthetic is ever written back to the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy.orm import Session

from config import settings
from db.models import MetricMeasurement
from services.errors import PlanValidationError
from services.rollup_service import window_summary
from utils.datetime_utils import end_of_day, end_of_week, start_of_day, start_of_week, today_for_tz, utcnow_naive, week_label
from utils.plan_fields import coerce_date, normalize_domain, round_half_up


logger = logging.getLogger(__name__)

# metric -> (minimum, maximum, decimals)
FALLBACK_RANGES: dict[str, tuple[float, float, int]] = {
    "weight": (58.0, 92.0, 1),
    "bmi": (18.5, 30.0, 1),
    "hba1c": (4.8, 7.2, 1),
    "compliance": (55.0, 95.0, 0),
}
DEFAULT_DECIMALS = 1


def metric_decimals(metric: str) -> int:
    return FALLBACK_RANGES.get(metric, (0.0, 0.0, DEFAULT_DECIMALS))[2]


def _seed_hash(seed: str) -> int:
    h = 0
    encoded = seed.encode("utf-16-le")
    for idx in range(0, len(encoded), 2):
        unit = encoded[idx] | (encoded[idx + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def seeded_value(seed: str, minimum: float, maximum: float, decimals: int = 1) -> float:
    """Deterministic pseudo-random value in [minimum, maximum] for a seed string."""
    normalized = (abs(_seed_hash(seed)) % 1000) / 1000
    value = minimum + (maximum - minimum) * normalized
    rounded = round_half_up(value, decimals)
    return int(rounded) if decimals == 0 else rounded


class FallbackStrategy(Protocol):
    def __call__(self, metric: str, label: str) -> float | None: ...


class SeededFallback:
    """Fill empty weeks with stable values seeded by '<week label>-<metric>'."""

    def __init__(self, ranges: dict[str, tuple[float, float, int]] | None = None):
        self.ranges = dict(ranges or FALLBACK_RANGES)

    def __call__(self, metric: str, label: str) -> float | None:
        bounds = self.ranges.get(metric)
        if bounds is None:
            return None
        minimum, maximum, decimals = bounds
        return seeded_value(f"{label}-{metric}", minimum, maximum, decimals)


class NoFallback:
    def __call__(self, metric: str, label: str) -> float | None:
        return None


def default_fallback() -> FallbackStrategy:
    if settings.TREND_FALLBACK_ENABLED:
        return SeededFallback()
    return NoFallback()


@dataclass(frozen=True)
class TrendWindow:
    start: date
    end: date

    @property
    def label(self) -> str:
        return week_label(self.end)


def weekly_windows(end_date: date | str, weeks: int) -> list[TrendWindow]:
    """Monday-Sunday windows, oldest first, the last one containing end_date."""
    end_date = coerce_date(end_date, "end_date")
    if isinstance(weeks, bool) or not isinstance(weeks, int) or not 1 <= weeks <= settings.TREND_MAX_WEEKS:
        raise PlanValidationError(f"weeks must be between 1 and {settings.TREND_MAX_WEEKS}", field="weeks")
    last_start = start_of_week(end_date)
    windows = []
    for offset in range(weeks - 1, -1, -1):
        start = last_start - timedelta(weeks=offset)
        windows.append(TrendWindow(start=start, end=end_of_week(start)))
    return windows


def _normalize_metric(metric: str) -> str:
    value = (metric or "").strip().lower()
    if not value:
        raise PlanValidationError("metric is required", field="metric")
    return value


def record_measurement(
    db: Session,
    subject_id: int,
    metric: str,
    value: float,
    measured_at: datetime | date | str | None = None,
    unit: str | None = None,
    source: str = "manual",
    notes: str | None = None,
) -> MetricMeasurement:
    metric = _normalize_metric(metric)
    if isinstance(value, bool):
        raise PlanValidationError("value must be a number", field="value")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise PlanValidationError("value must be a number", field="value") from None

    if measured_at is None:
        when = utcnow_naive()
    elif isinstance(measured_at, datetime):
        when = measured_at.replace(tzinfo=None)
    elif isinstance(measured_at, str) and len(measured_at.strip()) > 10:
        try:
            when = datetime.fromisoformat(measured_at.strip()).replace(tzinfo=None)
        except ValueError:
            raise PlanValidationError("measured_at must be an ISO date or datetime", field="measured_at") from None
    else:
        when = start_of_day(coerce_date(measured_at, "measured_at"))

    row = MetricMeasurement(
        subject_id=subject_id,
        metric=metric,
        value=number,
        unit=unit or None,
        measured_at=when,
        source=source or "manual",
        notes=notes or None,
    )
    db.add(row)
    db.flush()
    return row


def list_measurements(
    db: Session,
    subject_id: int,
    metric: str | None = None,
    start: date | str | None = None,
    end: date | str | None = None,
) -> list[MetricMeasurement]:
    q = db.query(MetricMeasurement).filter(MetricMeasurement.subject_id == subject_id)
    if metric:
        q = q.filter(MetricMeasurement.metric == _normalize_metric(metric))
    if start is not None:
        q = q.filter(MetricMeasurement.measured_at >= start_of_day(coerce_date(start, "start")))
    if end is not None:
        q = q.filter(MetricMeasurement.measured_at <= end_of_day(coerce_date(end, "end")))
    return q.order_by(MetricMeasurement.measured_at.asc(), MetricMeasurement.id.asc()).all()


def measurement_to_dict(row: MetricMeasurement) -> dict[str, Any]:
    return {
        "id": row.id,
        "metric": row.metric,
        "value": row.value,
        "unit": row.unit,
        "measured_at": row.measured_at.isoformat() if row.measured_at else None,
        "source": row.source,
        "notes": row.notes,
    }


def build_weekly_trends(
    db: Session,
    subject_id: int,
    metrics: list[str],
    end_date: date | str | None = None,
    weeks: int | None = None,
    domain: str | None = None,
    fallback: FallbackStrategy | None = None,
) -> dict[str, Any]:
    """Weekly averages per metric.

    Each point reports where its value came from: 'measured' for real data,
    'synthetic' for the fallback, 'missing' when neither applies.
    """
    metrics = list(dict.fromkeys(_normalize_metric(m) for m in (metrics or [])))
    if not metrics:
        raise PlanValidationError("At least one metric is required", field="metrics")
    if domain is not None:
        domain = normalize_domain(domain)
    if end_date is None:
        end_date = today_for_tz(settings.DEFAULT_TIMEZONE)
    windows = weekly_windows(end_date, weeks if weeks is not None else settings.TREND_DEFAULT_WEEKS)
    strategy = fallback if fallback is not None else default_fallback()

    measured_metrics = [m for m in metrics if m != "compliance"]
    by_week: dict[tuple[date, str], list[float]] = {}
    if measured_metrics:
        rows = (
            db.query(MetricMeasurement)
            .filter(
                MetricMeasurement.subject_id == subject_id,
                MetricMeasurement.metric.in_(measured_metrics),
                MetricMeasurement.measured_at >= start_of_day(windows[0].start),
                MetricMeasurement.measured_at <= end_of_day(windows[-1].end),
            )
            .all()
        )
        for row in rows:
            week_start = start_of_week(row.measured_at.date())
            by_week.setdefault((week_start, row.metric), []).append(row.value)

    points: list[dict[str, Any]] = []
    series: dict[str, list[float | None]] = {metric: [] for metric in metrics}
    synthetic_count = 0
    for window in windows:
        values: dict[str, dict[str, Any]] = {}
        for metric in metrics:
            value: float | None = None
            source = "missing"
            if metric == "compliance" and domain is not None:
                summary = window_summary(db, subject_id, domain, window.start, window.end)
                if summary["total_count"] > 0:
                    value = summary["completion_percentage"]
                    source = "measured"
            elif metric != "compliance":
                samples = by_week.get((window.start, metric))
                if samples:
                    value = round_half_up(sum(samples) / len(samples), metric_decimals(metric))
                    source = "measured"
            if value is None:
                value = strategy(metric, window.label)
                if value is not None:
                    source = "synthetic"
                    synthetic_count += 1
            values[metric] = {"value": value, "source": source}
            series[metric].append(value)
        points.append({
            "label": window.label,
            "week_start": window.start.isoformat(),
            "week_end": window.end.isoformat(),
            "values": values,
        })

    if synthetic_count:
        logger.debug("Trend for subject %s used %d synthetic points", subject_id, synthetic_count)
    return {
        "subject_id": subject_id,
        "domain": domain,
        "metrics": metrics,
        "labels": [window.label for window in windows],
        "points": points,
        "series": series,
    }
