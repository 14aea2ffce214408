"""Paddle payment webhook.

Deliveries are authenticated with the ``paddle-signature`` header before the
body is parsed; nothing is written for a request that fails verification.
Completed transactions are idempotent on the Paddle transaction id.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Mapping, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_session
from ..exceptions import PaddleAPIError, SignatureVerificationError
from ..metrics import CREDITS_PURCHASED, WEBHOOK_EVENTS
from ..models import CreditTransaction, User
from ..services import credits as credit_service
from ..services import paddle

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])

ALREADY_PROCESSED = "Transaction already processed"


def _already_processed(session: Session, transaction_id: Optional[str]) -> bool:
    if not transaction_id:
        return False
    return (
        session.query(CreditTransaction.id)
        .filter(CreditTransaction.paddle_transaction_id == transaction_id)
        .first()
        is not None
    )


def _lookup_email(data: Mapping[str, Any], client: Optional[paddle.PaddleClient]) -> Optional[str]:
    email = paddle.extract_customer_email(data)
    if email or client is None or not data.get("customer_id"):
        return email
    try:
        customer = client.get_customer_by_id(data["customer_id"])
    except PaddleAPIError as exc:
        logger.warning("paddle_customer_lookup_failed", customer_id=data["customer_id"], error=str(exc))
        return None
    return (customer or {}).get("email")


def _process_completed(
    session: Session,
    data: Mapping[str, Any],
    client: Optional[paddle.PaddleClient],
) -> Dict[str, Any]:
    settings = get_settings()
    transaction_id = data.get("id")

    email = _lookup_email(data, client)
    if not email and settings.app_env == "development" and settings.test_user_email:
        logger.info("webhook_using_test_user", transaction_id=transaction_id)
        email = settings.test_user_email
    if not email:
        raise HTTPException(status_code=400, detail="Customer email not found in transaction")

    user = session.query(User).filter(User.email == email.lower()).one_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    items = data.get("items") or []
    if not items:
        raise HTTPException(status_code=400, detail="No items in transaction")

    if _already_processed(session, transaction_id):
        logger.info("webhook_duplicate_transaction", transaction_id=transaction_id)
        return {"success": True, "message": ALREADY_PROCESSED, "transaction_id": transaction_id}

    credits_added = 0
    package_name = None
    for item in items:
        package = paddle.resolve_package(paddle.extract_package_name(item))
        quantity = item.get("quantity") or 1
        credits_added += package.credits * int(quantity)
        package_name = package_name or package.name
        logger.info("webhook_package_resolved", package=package.name, credits=package.credits, matched=package.matched)

    try:
        credit_service.record_purchase(
            session,
            user.id,
            credits=credits_added,
            package_name=package_name,
            paddle_transaction_id=transaction_id,
            amount=paddle.extract_amount(data),
            currency_code=data.get("currency_code") or "USD",
            metadata={"customer_id": data.get("customer_id"), "items": len(items)},
        )
        session.commit()
    except IntegrityError:
        # A concurrent delivery of the same transaction won the insert.
        session.rollback()
        logger.info("webhook_duplicate_transaction", transaction_id=transaction_id)
        return {"success": True, "message": ALREADY_PROCESSED, "transaction_id": transaction_id}

    CREDITS_PURCHASED.inc(credits_added)
    logger.info(
        "webhook_credits_added",
        transaction_id=transaction_id,
        user_id=user.id,
        credits=credits_added,
        package=package_name,
    )
    return {
        "success": True,
        "message": "Transaction processed successfully",
        "user_id": user.id,
        "credits_added": credits_added,
        "package": package_name,
    }


@router.post("")
async def paddle_webhook(
    request: Request,
    session: Session = Depends(get_session),
    client: Optional[paddle.PaddleClient] = Depends(paddle.get_paddle_client),
) -> Dict[str, Any]:
    settings = get_settings()
    if settings.paddle_webhook_secret is None:
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="misconfigured").inc()
        logger.error("webhook_secret_missing")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    raw_body = await request.body()
    try:
        paddle.verify_signature(
            raw_body,
            request.headers.get(paddle.SIGNATURE_HEADER),
            settings.paddle_webhook_secret.get_secret_value(),
            tolerance_seconds=settings.paddle_webhook_tolerance_seconds,
        )
    except SignatureVerificationError as exc:
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="rejected").inc()
        logger.warning("webhook_signature_rejected", reason=str(exc))
        raise HTTPException(status_code=401, detail="Invalid signature")

    if not raw_body.strip():
        raise HTTPException(status_code=400, detail="Empty request body")
    try:
        event = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(event, dict) or not event.get("event_type") or not isinstance(event.get("data"), dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    event_type = event["event_type"]
    data = event["data"]
    logger.info("webhook_received", event_type=event_type, transaction_id=data.get("id"))
    try:
        if event_type == "transaction.completed":
            # Database and Paddle REST calls block; keep them off the event loop.
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, _process_completed, session, data, client)
        elif event_type == "transaction.updated":
            result = {
                "success": True,
                "message": "Transaction update acknowledged",
                "transaction_id": data.get("id"),
                "status": data.get("status"),
            }
        else:
            result = {"success": True, "message": "Event received but not processed", "event_type": event_type}
    except HTTPException:
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="error").inc()
        raise
    finally:
        if client is not None:
            client.close()

    WEBHOOK_EVENTS.labels(event_type=event_type, outcome="processed").inc()
    return result


@router.get("/diagnostic")
def webhook_diagnostic() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "webhook_secret_configured": settings.paddle_webhook_secret is not None,
        "api_key_configured": bool(settings.active_paddle_api_key()),
        "environment": settings.paddle_environment,
        "signature_header": paddle.SIGNATURE_HEADER,
        "tolerance_seconds": settings.paddle_webhook_tolerance_seconds,
    }
