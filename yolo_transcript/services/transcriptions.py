"""Transcription lifecycle: charging, submitting and mirroring provider status."""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from ..config import get_settings
from ..exceptions import ProviderError
from ..models import Transcription, TranscriptionStatus
from . import credits as credit_service
from .assemblyai import AssemblyAIClient
from .transcript_processing import completion_counts

logger = logging.getLogger(__name__)


def rows_for_transcript(session: Session, transcript_id: str) -> list[Transcription]:
    return (
        session.query(Transcription)
        .filter(Transcription.transcript_id == transcript_id)
        .order_by(Transcription.created_at.asc(), Transcription.id.asc())
        .all()
    )


def remove_duplicate_transcriptions(session: Session, transcript_id: str) -> int:
    """Keep the oldest row for ``transcript_id`` and delete the rest."""

    rows = rows_for_transcript(session, transcript_id)
    duplicates = rows[1:]
    for row in duplicates:
        session.delete(row)
    if duplicates:
        session.flush()
        logger.warning(
            "Removed duplicate transcription rows",
            extra={"transcript_id": transcript_id, "removed": len(duplicates)},
        )
    return len(duplicates)


def start_transcription(
    session: Session,
    client: AssemblyAIClient,
    *,
    user_id: str,
    audio_url: str,
    file_name: str,
    file_size: Optional[int] = None,
    file_type: Optional[str] = None,
    duration_seconds: Optional[float] = None,
    speakers_expected: Optional[int] = None,
    terms: Sequence[str] = (),
    sentiment_analysis: bool = False,
    sync_to_drive: bool = False,
    extra_metadata: Optional[Mapping[str, Any]] = None,
) -> tuple[Transcription, int]:
    """Charge the user, submit the job and insert the local row.

    Credits are debited before the provider call and refunded if it fails, so a
    user can never start more work than their balance covers.
    """

    settings = get_settings()
    credits_needed = credit_service.calculate_credits(duration_seconds, settings.seconds_per_credit)
    usage = credit_service.debit_credits(session, user_id, credits_needed)
    session.commit()

    try:
        job = client.submit_transcript(
            audio_url,
            speakers_expected=speakers_expected,
            word_boost=terms,
            sentiment_analysis=sentiment_analysis,
            language_code=settings.assemblyai_language_code,
        )
    except ProviderError:
        credit_service.refund_credits(session, usage)
        session.commit()
        raise

    metadata: dict[str, Any] = {
        "speaker_labels_enabled": True,
        "speakers_expected": speakers_expected,
        "custom_vocabulary": list(terms),
        "sentiment_analysis": bool(sentiment_analysis),
        "credits_used": credits_needed,
        "sync_to_drive": bool(sync_to_drive),
    }
    metadata.update(extra_metadata or {})
    record = Transcription(
        user_id=user_id,
        transcript_id=job["id"],
        status=job.get("status") if job.get("status") in ("completed", "error") else TranscriptionStatus.PROCESSING.value,
        file_name=file_name,
        file_size=file_size,
        file_type=file_type,
        duration=duration_seconds,
        extra_metadata=metadata,
    )
    session.add(record)
    session.flush()
    credit_service.attach_usage_to_transcription(session, usage, record.id)
    session.commit()
    logger.info(
        "Started transcription",
        extra={"user_id": user_id, "transcript_id": record.transcript_id, "credits": credits_needed},
    )
    return record, credits_needed


def apply_provider_status(
    session: Session,
    transcript_id: str,
    payload: Mapping[str, Any],
    *,
    extra_metadata: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Copy the provider's job state onto the local row.

    Terminal rows are left alone apart from ``extra_metadata``; repeated calls
    with the same payload change nothing.
    """

    remove_duplicate_transcriptions(session, transcript_id)
    rows = rows_for_transcript(session, transcript_id)
    if not rows:
        return {"record_id": None, "status": payload.get("status"), "changed": False}
    record = rows[0]
    provider_status = payload.get("status")
    changed = False

    if not record.is_terminal and provider_status == TranscriptionStatus.COMPLETED.value:
        record.status = TranscriptionStatus.COMPLETED.value
        record.transcription_text = payload.get("text")
        if payload.get("audio_duration") is not None:
            record.duration = float(payload["audio_duration"])
        record.completed_at = datetime.now(UTC)
        record.merge_metadata(**completion_counts(payload))
        changed = True
    elif not record.is_terminal and provider_status == TranscriptionStatus.ERROR.value:
        record.status = TranscriptionStatus.ERROR.value
        record.error_message = payload.get("error") or "Transcription failed"
        changed = True

    if extra_metadata and record.status == TranscriptionStatus.COMPLETED.value:
        record.merge_metadata(**extra_metadata)
    session.flush()

    if changed:
        logger.info(
            "Transcription status updated",
            extra={"transcript_id": transcript_id, "status": record.status},
        )
    metadata = record.extra_metadata or {}
    return {
        "record_id": record.id,
        "user_id": record.user_id,
        "status": record.status,
        "changed": changed,
        "sync_to_drive": bool(
            changed
            and record.status == TranscriptionStatus.COMPLETED.value
            and metadata.get("sync_to_drive")
            and not metadata.get("synced_to_drive")
        ),
    }
