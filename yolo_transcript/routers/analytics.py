from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import AuthenticatedUser, get_current_user
from ..database import get_session
from ..models import Transcription
from ..schemas import QualityReview, TranscriptionRead
from ..services import analytics

router = APIRouter(prefix="/api", tags=["analytics"])


@router.get("/analytics")
def get_analytics(
    range_key: Literal["7d", "30d", "90d", "all"] = Query("30d", alias="range"),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    daily = analytics.daily_stats(session, user.id, range_key)
    return {"range": range_key, "daily": daily, "totals": analytics.total_stats(daily)}


@router.get("/quality")
def get_quality(
    status_filter: Optional[str] = Query(None, alias="status"),
    reviewed: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    query = session.query(Transcription).filter(Transcription.user_id == user.id)
    if status_filter:
        query = query.filter(Transcription.status == status_filter)
    if reviewed is not None:
        query = query.filter(Transcription.reviewed.is_(reviewed))
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Transcription.file_name.ilike(pattern), Transcription.transcription_text.ilike(pattern))
        )
    items = query.order_by(Transcription.created_at.desc()).all()
    return {
        "metrics": analytics.quality_metrics(session, user.id),
        "transcriptions": [TranscriptionRead.model_validate(item).model_dump(mode="json") for item in items],
    }


@router.post("/quality/{record_id}/review", response_model=TranscriptionRead)
def review_transcription(
    record_id: str,
    payload: QualityReview,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> TranscriptionRead:
    record = session.get(Transcription, record_id)
    if record is None or record.user_id != user.id:
        raise HTTPException(status_code=404, detail="Transcription not found")
    record.quality_score = payload.quality_score
    record.reviewer_notes = payload.reviewer_notes
    record.reviewed = True
    record.reviewed_at = datetime.now(UTC)
    session.commit()
    return TranscriptionRead.model_validate(record)
