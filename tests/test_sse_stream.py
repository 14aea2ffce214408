import asyncio
import json

from yolo_transcript.routers import transcriptions


def _collect(record_id: str) -> list:
    async def run_stream():
        events = []
        async for event in transcriptions._stream_status(record_id):
            events.append(event)
        return events

    return asyncio.run(run_stream())


def test_stream_status_emits_changes_until_completed(monkeypatch):
    snapshots = iter(
        [
            {"id": "rec1", "status": "processing"},
            {"id": "rec1", "status": "processing"},
            {"id": "rec1", "status": "completed", "completed_at": "2024-05-01T10:00:00"},
        ]
    )
    monkeypatch.setattr(transcriptions, "_status_snapshot", lambda record_id: next(snapshots))
    monkeypatch.setattr(transcriptions, "EVENTS_POLL_SECONDS", 0)

    events = _collect("rec1")

    assert [event["event"] for event in events] == ["status", "status", "completed"]
    assert json.loads(events[-1]["data"])["completed_at"] == "2024-05-01T10:00:00"


def test_stream_status_reports_failed_jobs(monkeypatch):
    monkeypatch.setattr(
        transcriptions,
        "_status_snapshot",
        lambda record_id: {"id": record_id, "status": "error", "error_message": "Audio too short"},
    )

    events = _collect("rec2")

    assert [event["event"] for event in events] == ["status", "error"]
    assert json.loads(events[-1]["data"])["error_message"] == "Audio too short"


def test_stream_status_for_missing_record(monkeypatch):
    monkeypatch.setattr(transcriptions, "_status_snapshot", lambda record_id: None)

    events = _collect("missing")

    assert events == [{"event": "error", "data": json.dumps({"detail": "transcription-not-found"})}]


def test_events_route_checks_ownership(client, other_user):
    from yolo_transcript.database import session_scope
    from yolo_transcript.models import Transcription

    with session_scope() as session:
        record = Transcription(user_id=other_user.id, transcript_id="tr_x", file_name="x.mp3")
        session.add(record)
        session.flush()
        record_id = record.id

    assert client.get(f"/api/transcriptions/{record_id}/events").status_code == 404
