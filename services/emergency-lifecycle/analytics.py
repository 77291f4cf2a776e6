"""Facility-facing analytics over emergency records."""
from datetime import datetime, timedelta
from typing import Iterable

from shared.types import EmergencyRecord, EmergencyStatus


def compute_analytics(records: Iterable[EmergencyRecord], now: datetime, days: int = 7) -> dict:
    """
    Summarize emergency records.

    Args:
        records: All emergency records
        now: Reference time for the per-day window
        days: Number of days (including today) in the per-day window

    Returns:
        Dict with per-status counts, average response time in minutes
        (assigned to completed, completed records only) and creation counts
        per day
    """
    records = list(records)

    stats = {status.value: 0 for status in EmergencyStatus}
    for record in records:
        stats[record.status.value] += 1
    stats["total"] = len(records)

    response_times = [
        (record.completed_at - record.assigned_at).total_seconds() / 60
        for record in records
        if record.status == EmergencyStatus.COMPLETED and record.assigned_at and record.completed_at
    ]
    avg_response_time = sum(response_times) / len(response_times) if response_times else 0

    by_day = []
    for offset in range(days - 1, -1, -1):
        day = (now - timedelta(days=offset)).date()
        count = sum(1 for record in records if record.created_at.date() == day)
        by_day.append({"date": day.isoformat(), "count": count})

    return {
        "stats": stats,
        "avg_response_time": round(avg_response_time),
        "emergencies_by_day": by_day,
    }
