from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import Any, AsyncGenerator, Dict, List, Literal, Optional
from urllib.parse import quote, urlparse

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
from starlette.requests import ClientDisconnect

from ..auth import AuthenticatedUser, get_current_user
from ..config import get_settings
from ..database import get_session, session_scope
from ..exceptions import ProviderError
from ..metrics import CREDITS_DEBITED, QUEUE_LENGTH, TRANSCRIPTIONS_STARTED
from ..models import Integration, IntegrationProvider, IntegrationStatus, Transcription
from ..schemas import (
    SpeakerLabelsUpdate,
    TranscribeRequest,
    TranscribeResponse,
    TranscribeUrlRequest,
    TranscriptionRead,
    UploadResponse,
    UtteranceEdit,
)
from ..services import assemblyai, export, vocabulary
from ..services.transcript_processing import enrich_transcript
from ..services.transcriptions import apply_provider_status, rows_for_transcript, start_transcription
from ..storage import MediaStorage, get_media_storage
from ..taskqueue import tasks
from ..taskqueue.backend import QueueUnavailableError, obtain_queue, queue_length

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transcriptions"])

EVENTS_POLL_SECONDS = 1.0
EVENTS_HEARTBEAT_SECONDS = 10.0


def _extension(file_name: str) -> str:
    return PurePosixPath(file_name).suffix.lstrip(".").lower()


def _drive_auto_save(session: Session, user_id: str) -> bool:
    integration = session.get(Integration, Integration.make_id(IntegrationProvider.GOOGLE_DRIVE.value, user_id))
    if integration is None or integration.status != IntegrationStatus.CONNECTED.value:
        return False
    return bool((integration.settings or {}).get("auto_save"))


def _owned_by_transcript_id(session: Session, transcript_id: str, user: AuthenticatedUser) -> Transcription:
    rows = rows_for_transcript(session, transcript_id)
    if not rows:
        raise HTTPException(status_code=404, detail="Transcription not found")
    record = rows[0]
    if record.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to access this transcription")
    return record


def _owned_by_id(session: Session, record_id: str, user: AuthenticatedUser) -> Transcription:
    record = session.get(Transcription, record_id)
    if record is None or record.user_id != user.id:
        raise HTTPException(status_code=404, detail="Transcription not found")
    return record


def _schedule_checks(transcript_id: str) -> None:
    try:
        queue, used_fallback = obtain_queue()
        tasks.schedule_status_checks(transcript_id, queue=queue)
    except QueueUnavailableError as exc:
        # The enriched GET route still refreshes the row on demand.
        logger.error("Status checks not scheduled", extra={"transcript_id": transcript_id, "error": str(exc)})
        return
    QUEUE_LENGTH.set(float(queue_length(queue)))
    if used_fallback:
        logger.info("Status checks queued in memory", extra={"transcript_id": transcript_id})


def _enqueue_drive_sync(record_id: str) -> None:
    try:
        queue, _ = obtain_queue()
        queue.enqueue(tasks.sync_transcription_to_drive, record_id)
    except QueueUnavailableError as exc:
        logger.error("Drive sync not queued", extra={"record_id": record_id, "error": str(exc)})


def _submit(
    session: Session,
    client: assemblyai.AssemblyAIClient,
    user: AuthenticatedUser,
    *,
    source: str,
    audio_url: str,
    file_name: str,
    file_size: Optional[int],
    file_type: Optional[str],
    duration_seconds: Optional[float],
    speakers_expected: Optional[int],
    custom_vocabulary: List[str],
    vocabulary_id: Optional[str],
    sentiment_analysis: bool,
    sync_to_drive: Optional[bool],
    extra_metadata: Dict[str, Any],
) -> TranscribeResponse:
    if vocabulary_id and vocabulary.get_vocabulary(session, user.id, vocabulary_id) is None:
        raise HTTPException(status_code=404, detail="Vocabulary not found")
    terms = vocabulary.resolve_terms(
        session,
        user.id,
        explicit_terms=custom_vocabulary,
        vocabulary_id=vocabulary_id,
    )
    if sync_to_drive is None:
        sync_to_drive = _drive_auto_save(session, user.id)

    record, credits_used = start_transcription(
        session,
        client,
        user_id=user.id,
        audio_url=audio_url,
        file_name=file_name,
        file_size=file_size,
        file_type=file_type,
        duration_seconds=duration_seconds,
        speakers_expected=speakers_expected,
        terms=terms,
        sentiment_analysis=sentiment_analysis,
        sync_to_drive=sync_to_drive,
        extra_metadata=extra_metadata,
    )
    TRANSCRIPTIONS_STARTED.labels(source=source).inc()
    CREDITS_DEBITED.inc(credits_used)
    _schedule_checks(record.transcript_id)
    return TranscribeResponse(
        id=record.id,
        transcript_id=record.transcript_id,
        status=record.status,
        credits_used=credits_used,
    )


def _upload_size(upload: UploadFile) -> int:
    upload.file.seek(0, 2)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _content_disposition(filename: str) -> str:
    # Header values must be latin-1; the full name travels in filename* (RFC 5987).
    fallback = "".join(ch for ch in filename if ch.isascii() and ch.isprintable() and ch not in '"\\').strip()
    return f"attachment; filename=\"{fallback or 'transcript'}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.post("/upload", response_model=UploadResponse)
def upload_media(
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> UploadResponse:
    settings = get_settings()
    file_name = file.filename or "upload"
    if _extension(file_name) not in settings.allowed_upload_extensions:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(settings.allowed_upload_extensions)}",
        )
    size = _upload_size(file)
    if size == 0:
        raise HTTPException(status_code=400, detail="No file provided")
    if size > settings.max_upload_size_mb * 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_upload_size_mb} MB limit",
        )

    storage_key = f"{user.id}/{uuid.uuid4()}-{PurePosixPath(file_name).name}"
    storage.ensure_bucket()
    storage.upload_media(file.file, storage_key, file.content_type)
    file.file.seek(0)
    try:
        upload_url = client.upload(file.file.read())
    except ProviderError:
        storage.delete_media(storage_key)
        raise
    finally:
        client.close()

    logger.info("Stored upload", extra={"user_id": user.id, "storage_key": storage_key, "size": size})
    return UploadResponse(
        url=upload_url,
        storage_key=storage_key,
        file_name=file_name,
        file_size=size,
        file_type=file.content_type,
    )


@router.post("/transcribe", response_model=TranscribeResponse, status_code=status.HTTP_201_CREATED)
def transcribe(
    payload: TranscribeRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> TranscribeResponse:
    extra: Dict[str, Any] = {}
    if payload.storage_key:
        extra["storage_key"] = payload.storage_key
    try:
        return _submit(
            session,
            client,
            user,
            source="upload",
            audio_url=payload.audio_url,
            file_name=payload.file_name or PurePosixPath(urlparse(payload.audio_url).path).name or "audio",
            file_size=payload.file_size,
            file_type=payload.file_type,
            duration_seconds=payload.duration_seconds,
            speakers_expected=payload.diarization_options.speakers_expected if payload.diarization_options else None,
            custom_vocabulary=payload.custom_vocabulary,
            vocabulary_id=payload.vocabulary_id,
            sentiment_analysis=payload.sentiment_analysis,
            sync_to_drive=payload.sync_to_drive,
            extra_metadata=extra,
        )
    finally:
        client.close()


@router.post("/transcribe-url", response_model=TranscribeResponse, status_code=status.HTTP_201_CREATED)
def transcribe_url(
    payload: TranscribeUrlRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> TranscribeResponse:
    parsed = urlparse(payload.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="A valid http(s) URL is required")
    settings = get_settings()
    try:
        return _submit(
            session,
            client,
            user,
            source="url",
            audio_url=payload.url,
            file_name=PurePosixPath(parsed.path).name or parsed.netloc,
            file_size=None,
            file_type="url",
            duration_seconds=settings.url_estimated_duration_seconds,
            speakers_expected=payload.diarization_options.speakers_expected if payload.diarization_options else None,
            custom_vocabulary=payload.custom_vocabulary,
            vocabulary_id=payload.vocabulary_id,
            sentiment_analysis=payload.sentiment_analysis,
            sync_to_drive=payload.sync_to_drive,
            extra_metadata={"source_url": payload.url, "estimated_duration": True},
        )
    finally:
        client.close()


@router.get("/transcriptions", response_model=List[TranscriptionRead])
def list_transcriptions(
    status_filter: Optional[str] = Query(None, alias="status"),
    reviewed: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Matches file name or transcript text"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> List[TranscriptionRead]:
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
    items = query.order_by(Transcription.created_at.desc()).offset(offset).limit(limit).all()
    return [TranscriptionRead.model_validate(item) for item in items]


@router.get("/transcription/{transcript_id}")
def get_enriched_transcript(
    transcript_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> Dict[str, Any]:
    """Fetch the provider job, enrich it and mirror a completed job locally."""

    record = _owned_by_transcript_id(session, transcript_id, user)
    try:
        payload = client.get_transcript(transcript_id)
    finally:
        client.close()

    enriched = enrich_transcript(payload, record.extra_metadata or {})
    if payload.get("status") in ("completed", "error"):
        sentiment = enriched["sentiment"]
        result = apply_provider_status(
            session,
            transcript_id,
            payload,
            extra_metadata={
                "speakers": enriched["speakers"],
                "utterances_count": len(enriched["utterances"]),
                "sentiment": sentiment["overall"],
                "sentiment_summary": sentiment["summary"],
            },
        )
        session.commit()
        if result.get("sync_to_drive"):
            _enqueue_drive_sync(result["record_id"])
    enriched["record_id"] = record.id
    return enriched


@router.put("/transcription/{transcript_id}/utterance")
def update_utterance(
    transcript_id: str,
    payload: UtteranceEdit,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    if not payload.utterance_id or payload.text is None:
        raise HTTPException(status_code=400, detail="utterance_id and text are required")
    record = _owned_by_transcript_id(session, transcript_id, user)
    edits = dict((record.extra_metadata or {}).get("utterance_edits") or {})
    previous = edits.get(payload.utterance_id) or {}
    edits[payload.utterance_id] = {
        "original_text": previous.get("original_text", payload.original_text),
        "updated_text": payload.text,
        "updated_at": datetime.now(UTC).isoformat(),
    }
    record.merge_metadata(utterance_edits=edits)
    session.commit()
    return {"success": True, "utterance_id": payload.utterance_id, "edit": edits[payload.utterance_id]}


@router.put("/transcription/{transcript_id}/speakers")
def update_speaker_labels(
    transcript_id: str,
    payload: SpeakerLabelsUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    record = _owned_by_transcript_id(session, transcript_id, user)
    labels = {speaker: label.strip() for speaker, label in payload.labels.items() if label and label.strip()}
    record.merge_metadata(speaker_labels=labels)
    session.commit()
    return {"success": True, "speaker_labels": labels}


@router.get("/transcriptions/{record_id}/download")
def download_transcription(
    record_id: str,
    format: Literal["txt", "md", "html", "srt"] = Query("txt"),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> Response:
    record = _owned_by_id(session, record_id, user)
    if not record.transcription_text:
        raise HTTPException(status_code=404, detail="Transcript text not available yet")

    utterances: List[Dict[str, Any]] = []
    speakers: List[Dict[str, Any]] = []
    try:
        if format != "txt":
            enriched = enrich_transcript(client.get_transcript(record.transcript_id), record.extra_metadata or {})
            utterances, speakers = enriched["utterances"], enriched["speakers"]
    except ProviderError as exc:
        logger.warning(
            "Exporting without utterances",
            extra={"record_id": record_id, "format": format, "error": str(exc)},
        )
        speakers = (record.extra_metadata or {}).get("speakers") or []
    finally:
        client.close()

    content, media_type = export.render_export(record, format, utterances=utterances, speakers=speakers)
    response = Response(content=content, media_type=media_type)
    response.headers["Content-Disposition"] = _content_disposition(export.export_filename(record, format))
    return response


def _status_snapshot(record_id: str) -> Optional[Dict[str, Any]]:
    with session_scope() as session:
        record = session.get(Transcription, record_id)
        if record is None:
            return None
        return {
            "id": record.id,
            "transcript_id": record.transcript_id,
            "status": record.status,
            "error_message": record.error_message,
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        }


async def _stream_status(record_id: str) -> AsyncGenerator[Dict[str, str], None]:
    loop = asyncio.get_running_loop()
    last_status: Optional[str] = None
    last_heartbeat = loop.time()
    while True:
        snapshot = _status_snapshot(record_id)
        if snapshot is None:
            yield {"event": "error", "data": json.dumps({"detail": "transcription-not-found"})}
            return
        if snapshot["status"] != last_status:
            last_status = snapshot["status"]
            yield {"event": "status", "data": json.dumps(snapshot)}
        if snapshot["status"] == "completed":
            yield {"event": "completed", "data": json.dumps(snapshot)}
            return
        if snapshot["status"] == "error":
            yield {"event": "error", "data": json.dumps(snapshot)}
            return

        now = loop.time()
        if now - last_heartbeat >= EVENTS_HEARTBEAT_SECONDS:
            yield {"event": "heartbeat", "data": json.dumps({"id": record_id, "status": last_status})}
            last_heartbeat = now
        await asyncio.sleep(EVENTS_POLL_SECONDS)


@router.get("/transcriptions/{record_id}/events")
async def transcription_events(
    record_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> EventSourceResponse:
    with session_scope() as session:
        _owned_by_id(session, record_id, user)

    async def event_generator() -> AsyncGenerator[Dict[str, str], None]:
        try:
            async for event in _stream_status(record_id):
                yield event
        except ClientDisconnect:  # pragma: no cover - network race
            logger.info("SSE client disconnected", extra={"record_id": record_id, "user_id": user.id})
        except asyncio.CancelledError:  # pragma: no cover - shutdown handling
            logger.info("SSE stream cancelled", extra={"record_id": record_id, "user_id": user.id})
            raise

    return EventSourceResponse(
        event_generator(),
        ping=10.0,
        retry=5000,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/assembly-token")
def assembly_token(
    user: AuthenticatedUser = Depends(get_current_user),
    client: assemblyai.AssemblyAIClient = Depends(assemblyai.get_assemblyai_client),
) -> Dict[str, Any]:
    settings = get_settings()
    try:
        token = client.create_realtime_token(settings.realtime_token_ttl_seconds)
    finally:
        client.close()
    logger.info("Issued realtime token", extra={"user_id": user.id})
    return {"token": token, "expires_in": settings.realtime_token_ttl_seconds}
