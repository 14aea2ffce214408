"""Credit balance rules: pricing, atomic debits, purchases and trial bookkeeping."""
from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..exceptions import InsufficientCreditsError
from ..models import CreditTransaction, CreditUsage, UserCredits

logger = logging.getLogger(__name__)

SECONDS_PER_CREDIT = 360
DEFAULT_USAGE_DESCRIPTION = "Transcription processing"
REFUND_DESCRIPTION = "Refund"


def calculate_credits(duration_seconds: Optional[float], seconds_per_credit: int = SECONDS_PER_CREDIT) -> int:
    """Return the credits charged for ``duration_seconds`` of audio (minimum one)."""

    if not duration_seconds or duration_seconds <= 0:
        return 1
    return max(1, math.ceil(duration_seconds / seconds_per_credit))


def get_or_create_credits(session: Session, user_id: str, initial: int = 0) -> UserCredits:
    record = session.get(UserCredits, user_id)
    if record is None:
        record = UserCredits(user_id=user_id, credits_balance=initial, trial_status=False, trial_credits_used=0)
        session.add(record)
        session.flush()
    return record


def get_balance(session: Session, user_id: str) -> int:
    balance = session.query(UserCredits.credits_balance).filter(UserCredits.user_id == user_id).scalar()
    return int(balance or 0)


def has_enough_credits(session: Session, user_id: str, needed: int) -> bool:
    return get_balance(session, user_id) >= needed


def credit_summary(session: Session, user_id: str) -> dict[str, int]:
    purchased, purchase_count = (
        session.query(func.coalesce(func.sum(CreditTransaction.credits_added), 0), func.count(CreditTransaction.id))
        .filter(CreditTransaction.user_id == user_id, CreditTransaction.status == "completed")
        .one()
    )
    # Refunds are negative entries, so the sum is net usage.
    used, usage_count = (
        session.query(
            func.coalesce(func.sum(CreditUsage.credits_used), 0),
            func.count(CreditUsage.id).filter(CreditUsage.credits_used > 0),
        )
        .filter(CreditUsage.user_id == user_id)
        .one()
    )
    return {
        "credits_balance": get_balance(session, user_id),
        "total_credits_purchased": int(purchased or 0),
        "total_credits_used": int(used or 0),
        "purchase_count": int(purchase_count or 0),
        "usage_count": int(usage_count or 0),
    }


def debit_credits(
    session: Session,
    user_id: str,
    amount: int,
    *,
    transcription_id: Optional[str] = None,
    description: str = DEFAULT_USAGE_DESCRIPTION,
) -> CreditUsage:
    """Atomically subtract ``amount`` credits and append the usage entry.

    The balance check and the subtraction happen in one conditional UPDATE so
    concurrent debits can never drive the balance below zero.
    """

    if amount <= 0:
        raise ValueError("amount must be positive")
    result = session.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id, UserCredits.credits_balance >= amount)
        .values(credits_balance=UserCredits.credits_balance - amount, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise InsufficientCreditsError(needed=amount, available=get_balance(session, user_id))
    record = session.get(UserCredits, user_id)
    session.refresh(record)
    if record.trial_status:
        record.trial_credits_used = (record.trial_credits_used or 0) + amount
        record.trial_status = record.credits_balance > 0
    usage = CreditUsage(
        user_id=user_id,
        transcription_id=transcription_id,
        credits_used=amount,
        description=description or DEFAULT_USAGE_DESCRIPTION,
    )
    session.add(usage)
    session.flush()
    logger.info("Debited credits", extra={"user_id": user_id, "credits": amount, "transcription_id": transcription_id})
    return usage


def add_credits(session: Session, user_id: str, amount: int) -> int:
    """Atomically add ``amount`` credits, creating the balance row if needed."""

    get_or_create_credits(session, user_id)
    session.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id)
        .values(credits_balance=UserCredits.credits_balance + amount, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    return get_balance(session, user_id)


def _has_purchases(session: Session, user_id: str) -> bool:
    return (
        session.query(CreditTransaction.id)
        .filter(CreditTransaction.user_id == user_id, CreditTransaction.status == "completed")
        .first()
        is not None
    )


def refund_credits(session: Session, usage: CreditUsage) -> CreditUsage:
    """Give back credits debited for a job the provider refused.

    The original usage row stays and a negative entry offsets it. Refunding a
    trial debit also gives the trial allowance back.
    """

    amount = usage.credits_used
    add_credits(session, usage.user_id, amount)
    record = session.get(UserCredits, usage.user_id)
    session.refresh(record)
    if (record.trial_credits_used or 0) >= amount and not _has_purchases(session, usage.user_id):
        record.trial_credits_used -= amount
        record.trial_status = record.credits_balance > 0
    refund = CreditUsage(
        user_id=usage.user_id,
        transcription_id=usage.transcription_id,
        credits_used=-amount,
        description=REFUND_DESCRIPTION,
    )
    session.add(refund)
    session.flush()
    logger.warning("Refunded credits", extra={"user_id": usage.user_id, "credits": amount})
    return refund


def attach_usage_to_transcription(session: Session, usage: CreditUsage, transcription_id: str) -> None:
    usage.transcription_id = transcription_id
    session.flush()


def record_purchase(
    session: Session,
    user_id: str,
    *,
    credits: int,
    package_name: str,
    paddle_transaction_id: Optional[str],
    amount: float = 0,
    currency_code: str = "USD",
    metadata: Optional[dict[str, Any]] = None,
) -> CreditTransaction:
    transaction = CreditTransaction(
        user_id=user_id,
        paddle_transaction_id=paddle_transaction_id,
        amount=amount,
        currency_code=currency_code or "USD",
        status="completed",
        credits_added=credits,
        package_name=package_name,
        extra_metadata=metadata or {},
    )
    session.add(transaction)
    session.flush()
    add_credits(session, user_id, credits)
    record = session.get(UserCredits, user_id)
    record.trial_status = False
    session.flush()
    return transaction


def credit_history(session: Session, user_id: str) -> dict[str, list[dict[str, Any]]]:
    transactions = (
        session.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .all()
    )
    usage = (
        session.query(CreditUsage)
        .filter(CreditUsage.user_id == user_id)
        .order_by(CreditUsage.created_at.desc())
        .all()
    )
    return {
        "transactions": [
            {
                "id": item.id,
                "paddle_transaction_id": item.paddle_transaction_id,
                "amount": item.amount,
                "currency_code": item.currency_code,
                "status": item.status,
                "credits_added": item.credits_added,
                "package_name": item.package_name,
                "created_at": item.created_at.isoformat() if item.created_at else None,
            }
            for item in transactions
        ],
        "usage": [
            {
                "id": item.id,
                "transcription_id": item.transcription_id,
                "credits_used": item.credits_used,
                "description": item.description,
                "created_at": item.created_at.isoformat() if item.created_at else None,
            }
            for item in usage
        ],
    }


def trial_status(session: Session, user_id: str) -> dict[str, Any]:
    record = session.get(UserCredits, user_id)
    if record is None or not record.trial_status or record.credits_balance <= 0:
        return {
            "is_trial_active": False,
            "trial_credits_remaining": 0,
            "message": "Your trial has ended. Please purchase credits to continue.",
        }
    remaining = record.credits_balance
    suffix = "" if remaining == 1 else "s"
    return {
        "is_trial_active": True,
        "trial_credits_remaining": remaining,
        "message": f"You have {remaining} trial credit{suffix} remaining.",
    }



def use_trial_credit(session: Session, user_id: str) -> dict[str, Any]:
    """Spend a single trial credit and return the updated trial status."""

    record = session.get(UserCredits, user_id)
    if record is None or not record.trial_status:
        raise InsufficientCreditsError(needed=1, available=get_balance(session, user_id))
    debit_credits(session, user_id, 1, description="Trial credit")
    return trial_status(session, user_id)
