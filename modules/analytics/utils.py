"""
Pure aggregation helpers for incident analytics.

Each function takes grouped-count records as produced by
`IncidentStore.aggregate` (key fields plus `count` and per-status counts) or
plain incident data, and returns plain dicts ready for serialization. None
of them touch a store, so they behave the same on every backend.
"""

import math
from enum import Enum
from typing import Dict, Iterable, List, Tuple

from modules.incidents.store import STATUS_VALUES


class Period(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


PERIOD_KEYS: Dict[Period, Tuple[str, ...]] = {
    Period.DAY: ("year", "month", "day"),
    Period.WEEK: ("iso_year", "iso_week"),
    Period.MONTH: ("year", "month"),
}


def status_totals(rows: Iterable[dict]) -> Dict[str, int]:
    totals = {"total": 0, **{status: 0 for status in STATUS_VALUES}}
    for row in rows:
        totals["total"] += row.get("count", 0)
        for status in STATUS_VALUES:
            totals[status] += row.get(status, 0)
    return totals


def by_type_breakdown(rows: Iterable[dict]) -> List[dict]:
    """Per-type total/verified/resolved, largest first."""
    merged: Dict[str, dict] = {}
    for row in rows:
        entry = merged.setdefault(row["type"], {"type": row["type"], "count": 0, "verified": 0, "resolved": 0})
        entry["count"] += row.get("count", 0)
        entry["verified"] += row.get("verified", 0)
        entry["resolved"] += row.get("resolved", 0)
    return sorted(merged.values(), key=lambda e: (-e["count"], e["type"]))


def by_status_breakdown(rows: Iterable[dict]) -> List[dict]:
    merged: Dict[str, int] = {}
    for row in rows:
        if row.get("count", 0):
            merged[row["status"]] = merged.get(row["status"], 0) + row["count"]
    return [
        {"status": status, "count": count}
        for status, count in sorted(merged.items(), key=lambda item: (-item[1], item[0]))
    ]


def parse_period(raw) -> Period:
    try:
        return Period(str(raw).strip().lower())
    except ValueError:
        return Period.DAY


def bucket_label(bucket: dict, period: Period) -> str:
    if period == Period.WEEK:
        return f"{bucket['year']:04d}-W{bucket['week']:02d}"
    if period == Period.MONTH:
        return f"{bucket['year']:04d}-{bucket['month']:02d}"
    return f"{bucket['year']:04d}-{bucket['month']:02d}-{bucket['day']:02d}"


def time_series(rows: Iterable[dict], period: Period) -> List[dict]:
    """Chronologically ordered buckets with total/verified/resolved counts."""
    series = []
    for row in rows:
        if period == Period.WEEK:
            bucket = {"year": int(row["iso_year"]), "week": int(row["iso_week"])}
        else:
            bucket = {key: int(row[key]) for key in PERIOD_KEYS[period]}
        bucket.update(
            label=bucket_label(bucket, period),
            count=row.get("count", 0),
            verified=row.get("verified", 0),
            resolved=row.get("resolved", 0),
        )
        series.append(bucket)
    series.sort(key=lambda b: (b["year"], b.get("month", 0), b.get("week", 0), b.get("day", 0)))
    return series


def rank_reporters(rows: Iterable[dict], limit: int) -> List[dict]:
    """Top `limit` reporters by total reports (ties broken by id)."""
    ranked = [
        {"userId": row["reported_by"], "totalReports": row.get("count", 0), "verifiedReports": row.get("verified", 0)}
        for row in rows
    ]
    ranked.sort(key=lambda r: (-r["totalReports"], r["userId"]))
    return ranked[:limit]


def average_latency_hours(total_seconds: float, count: int) -> int:
    """Mean latency in whole hours, half rounded up; 0 when nothing was reviewed."""
    if not count:
        return 0
    return math.floor(total_seconds / count / 3600 + 0.5)
