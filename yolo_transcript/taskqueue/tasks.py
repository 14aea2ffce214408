"""RQ tasks that poll AssemblyAI and mirror job status into the database."""
from __future__ import annotations

import logging
from contextvars import ContextVar
from datetime import UTC, datetime, timedelta
from pathlib import PurePosixPath
from typing import Any, Optional, Sequence

from rq import get_current_job as rq_get_current_job

from ..config import get_settings
from ..database import session_scope
from ..exceptions import GoogleDriveError, IntegrationNotConnectedError, ProviderError
from ..models import Integration, IntegrationProvider, Transcription
from ..services import assemblyai, google
from ..services.transcriptions import apply_provider_status

logger = logging.getLogger(__name__)

_current_job_ctx: ContextVar[Any | None] = ContextVar("yolo_current_job", default=None)


def set_current_job(job: Any | None) -> None:
    _current_job_ctx.set(job)


def clear_current_job() -> None:
    _current_job_ctx.set(None)


def get_current_job():
    job = rq_get_current_job()
    if job is not None:
        return job
    return _current_job_ctx.get()


def _update_job_meta(meta: dict) -> None:
    job = get_current_job()
    if job is None:
        return
    job.meta.update(meta)
    job.meta["updated_at"] = datetime.now(UTC).isoformat()
    job.save_meta()


def check_transcription_status(transcript_id: str, *, attempt: Optional[int] = None) -> dict:
    """Worker entrypoint: fetch the provider job once and update the local row."""

    _update_job_meta({"status": "checking", "transcript_id": transcript_id, "attempt": attempt})
    try:
        client = assemblyai.get_assemblyai_client()
        try:
            payload = client.get_transcript(transcript_id)
        finally:
            client.close()
    except ProviderError as exc:
        logger.warning(
            "Status check failed",
            extra={"transcript_id": transcript_id, "attempt": attempt, "error": str(exc)},
        )
        _update_job_meta({"status": "failed", "error_message": str(exc)})
        raise

    with session_scope() as session:
        result = apply_provider_status(session, transcript_id, payload)

    if result.get("sync_to_drive"):
        result["drive"] = sync_transcription_to_drive(result["record_id"])

    _update_job_meta({"status": "completed", "provider_status": payload.get("status")})
    logger.info(
        "Status check finished",
        extra={"transcript_id": transcript_id, "attempt": attempt, "status": result.get("status")},
    )
    return result


def sync_transcription_to_drive(record_id: str) -> dict:
    """Upload a completed transcript to the owner's Google Drive folder."""

    with session_scope() as session:
        record = session.get(Transcription, record_id)
        if record is None or not record.transcription_text:
            return {"synced": False, "reason": "missing"}
        integration = session.get(
            Integration,
            Integration.make_id(IntegrationProvider.GOOGLE_DRIVE.value, record.user_id),
        )
        if integration is None:
            record.merge_metadata(drive_sync_error="Google Drive is not connected")
            return {"synced": False, "reason": "not_connected"}
        stem = PurePosixPath(record.file_name or "transcript").stem or "transcript"
        try:
            oauth = google.get_oauth_client()
            drive_factory = google.get_drive_client_factory()
            uploaded = google.upload_for_integration(
                integration,
                oauth,
                drive_factory,
                file_name=f"{stem}_transcript.txt",
                content=record.transcription_text.encode("utf-8"),
                mime_type="text/plain",
            )
        except (GoogleDriveError, IntegrationNotConnectedError, ProviderError) as exc:
            logger.warning("Drive sync failed", extra={"record_id": record_id, "error": str(exc)})
            record.merge_metadata(drive_sync_error=str(exc))
            return {"synced": False, "reason": str(exc)}
        record.merge_metadata(
            synced_to_drive=True,
            drive_file_id=uploaded.get("id"),
            drive_file_link=uploaded.get("webViewLink"),
            drive_sync_error=None,
        )
        return {"synced": True, "drive_file_id": uploaded.get("id")}


def schedule_status_checks(
    transcript_id: str,
    *,
    delays: Optional[Sequence[int]] = None,
    queue: Any = None,
) -> list[str]:
    """Enqueue one-shot status checks after each delay (seconds)."""

    from .backend import obtain_queue

    settings = get_settings()
    if queue is None:
        queue, _ = obtain_queue()
    job_ids = []
    for attempt, delay in enumerate(delays or settings.status_check_delays, start=1):
        job = queue.enqueue_in(
            timedelta(seconds=delay),
            check_transcription_status,
            transcript_id,
            attempt=attempt,
            job_timeout=settings.rq_job_timeout,
            result_ttl=settings.rq_result_ttl,
            failure_ttl=settings.rq_failure_ttl,
            meta={"transcript_id": transcript_id, "attempt": attempt},
        )
        job_ids.append(job.id)
    logger.info("Scheduled status checks", extra={"transcript_id": transcript_id, "jobs": len(job_ids)})
    return job_ids
