"""Dashboard aggregates over a user's transcriptions."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..models import Transcription, TranscriptionStatus

RANGES = {"7d": 7, "30d": 30, "90d": 90, "all": None}


def _range_start(range_key: str, now: Optional[datetime] = None) -> Optional[datetime]:
    days = RANGES[range_key]
    if days is None:
        return None
    now = now or datetime.now(UTC)
    return now - timedelta(days=days)


def daily_stats(session: Session, user_id: str, range_key: str = "30d") -> list[dict[str, Any]]:
    day = func.date(Transcription.created_at)
    query = session.query(
        day.label("date"),
        func.count(Transcription.id),
        func.sum(case((Transcription.status == TranscriptionStatus.COMPLETED.value, 1), else_=0)),
        func.sum(case((Transcription.status == TranscriptionStatus.ERROR.value, 1), else_=0)),
        func.sum(Transcription.duration),
    ).filter(Transcription.user_id == user_id)
    start = _range_start(range_key)
    if start is not None:
        query = query.filter(Transcription.created_at >= start)
    rows = query.group_by(day).order_by(day.asc()).all()

    stats = []
    for date_value, total, completed, failed, duration in rows:
        total = int(total or 0)
        duration = float(duration or 0)
        stats.append(
            {
                "date": str(date_value),
                "total_transcriptions": total,
                "completed_transcriptions": int(completed or 0),
                "failed_transcriptions": int(failed or 0),
                "total_duration": duration,
                "average_duration": duration / total if total else 0,
            }
        )
    return stats


def total_stats(daily: list[dict[str, Any]]) -> dict[str, Any]:
    totals = {
        "total_transcriptions": 0,
        "completed_transcriptions": 0,
        "failed_transcriptions": 0,
        "total_duration": 0.0,
    }
    for day in daily:
        for key in totals:
            totals[key] += day.get(key) or 0
    total = totals["total_transcriptions"]
    totals["average_duration"] = totals["total_duration"] / total if total else 0
    return totals


def quality_metrics(session: Session, user_id: str) -> dict[str, Any]:
    total, reviewed, average = (
        session.query(
            func.count(Transcription.id),
            func.sum(case((Transcription.reviewed.is_(True), 1), else_=0)),
            func.avg(Transcription.quality_score),
        )
        .filter(Transcription.user_id == user_id)
        .one()
    )
    total = int(total or 0)
    reviewed = int(reviewed or 0)
    return {
        "total": total,
        "reviewed": reviewed,
        "pending": total - reviewed,
        "average_quality_score": round(float(average), 2) if average is not None else None,
    }
