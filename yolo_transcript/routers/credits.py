from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import AuthenticatedUser, get_current_user
from ..config import get_settings
from ..database import get_session
from ..metrics import CREDITS_DEBITED
from ..models import Transcription
from ..schemas import CreditActionRequest, CreditCheckRequest, CreditSummary, TrialStatus
from ..services import credits as credit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("", response_model=CreditSummary)
def get_credits(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> CreditSummary:
    return CreditSummary(**credit_service.credit_summary(session, user.id))


@router.post("")
def credit_action(
    payload: CreditActionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    if payload.action == "history":
        return credit_service.credit_history(session, user.id)
    if payload.action not in ("check", "deduct"):
        raise HTTPException(status_code=400, detail="Invalid action")
    if payload.duration_in_seconds is None or payload.duration_in_seconds < 0:
        raise HTTPException(status_code=400, detail="Invalid duration")

    credits_needed = credit_service.calculate_credits(
        payload.duration_in_seconds, get_settings().seconds_per_credit
    )
    if payload.action == "check":
        return {
            "has_enough_credits": credit_service.has_enough_credits(session, user.id, credits_needed),
            "credits_needed": credits_needed,
        }

    if not payload.transcription_id:
        raise HTTPException(status_code=400, detail="Transcription ID is required")
    transcription = session.get(Transcription, payload.transcription_id)
    if transcription is None or transcription.user_id != user.id:
        raise HTTPException(status_code=404, detail="Transcription not found")
    credit_service.debit_credits(session, user.id, credits_needed, transcription_id=transcription.id)
    CREDITS_DEBITED.inc(credits_needed)
    return {"success": True, "credits_deducted": credits_needed}


@router.post("/check")
def check_credits(
    payload: CreditCheckRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    if payload.action != "check":
        raise HTTPException(status_code=400, detail="Invalid action")
    if payload.credits_needed is None or payload.credits_needed <= 0:
        raise HTTPException(status_code=400, detail="Invalid credits amount")
    record = credit_service.get_or_create_credits(session, user.id)
    return {
        "has_enough_credits": record.credits_balance >= payload.credits_needed,
        "credits_needed": payload.credits_needed,
        "credits_available": record.credits_balance,
        "authenticated": True,
    }


@router.get("/trial", response_model=TrialStatus)
def get_trial_status(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> TrialStatus:
    return TrialStatus(**credit_service.trial_status(session, user.id))


@router.post("/trial/use", response_model=TrialStatus)
def use_trial_credit(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> TrialStatus:
    status = credit_service.use_trial_credit(session, user.id)
    CREDITS_DEBITED.inc()
    logger.info("Trial credit used", extra={"user_id": user.id})
    return TrialStatus(**status)
