from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from yolo_transcript.database import session_scope
from yolo_transcript.exceptions import AssemblyAIError
from yolo_transcript.models import Transcription
from yolo_transcript.taskqueue import tasks
from yolo_transcript.taskqueue.backend import obtain_queue, queue_length
from yolo_transcript.taskqueue.fallback import InMemoryQueue, InMemoryRedis, drain_completed_jobs


def _add_row(user_id: str, transcript_id: str = "tr_1", **values) -> str:
    with session_scope() as session:
        record = Transcription(user_id=user_id, transcript_id=transcript_id, file_name="call.mp3", **values)
        session.add(record)
        session.flush()
        return record.id


def test_status_check_completes_row_once(user, fake_assemblyai):
    record_id = _add_row(user.id, extra_metadata={"credits_used": 1})
    fake_assemblyai.transcripts["tr_1"] = {
        "id": "tr_1",
        "status": "completed",
        "text": "All done.",
        "audio_duration": 42,
        "words": [{"text": "All", "speaker": "A"}, {"text": "done.", "speaker": "A"}],
    }

    first = tasks.check_transcription_status("tr_1", attempt=1)
    with session_scope() as session:
        completed_at = session.get(Transcription, record_id).completed_at
    second = tasks.check_transcription_status("tr_1", attempt=2)

    assert first["changed"] is True
    assert first["status"] == "completed"
    assert second["changed"] is False
    with session_scope() as session:
        record = session.get(Transcription, record_id)
        assert record.transcription_text == "All done."
        assert record.duration == 42.0
        assert record.completed_at == completed_at
        assert record.extra_metadata["credits_used"] == 1
        assert record.extra_metadata["words_count"] == 2
        assert record.extra_metadata["speakers_count"] == 1


def test_status_check_records_provider_error(user, fake_assemblyai):
    record_id = _add_row(user.id)
    fake_assemblyai.transcripts["tr_1"] = {"id": "tr_1", "status": "error", "error": "Audio too short"}

    result = tasks.check_transcription_status("tr_1")

    assert result["status"] == "error"
    with session_scope() as session:
        assert session.get(Transcription, record_id).error_message == "Audio too short"


def test_status_check_leaves_processing_rows_alone(user, fake_assemblyai):
    record_id = _add_row(user.id)
    fake_assemblyai.transcripts["tr_1"] = {"id": "tr_1", "status": "processing"}

    assert tasks.check_transcription_status("tr_1")["changed"] is False
    with session_scope() as session:
        assert session.get(Transcription, record_id).status == "processing"


def test_status_check_propagates_provider_failures(user, fake_assemblyai):
    _add_row(user.id)
    fake_assemblyai.fail_get = True

    with pytest.raises(AssemblyAIError):
        tasks.check_transcription_status("tr_1")


def test_duplicate_rows_are_collapsed_to_the_oldest(user, fake_assemblyai):
    oldest = _add_row(user.id, created_at=datetime(2024, 1, 1, tzinfo=UTC))
    _add_row(user.id, created_at=datetime(2024, 1, 2, tzinfo=UTC))
    fake_assemblyai.transcripts["tr_1"] = {"id": "tr_1", "status": "completed", "text": "ok"}

    result = tasks.check_transcription_status("tr_1")

    assert result["record_id"] == oldest
    with session_scope() as session:
        assert session.query(Transcription).count() == 1


def test_completed_job_triggers_drive_sync_when_requested(user, fake_assemblyai, monkeypatch):
    record_id = _add_row(user.id, extra_metadata={"sync_to_drive": True})
    fake_assemblyai.transcripts["tr_1"] = {"id": "tr_1", "status": "completed", "text": "sync me"}
    synced = []
    monkeypatch.setattr(tasks, "sync_transcription_to_drive", lambda rid: synced.append(rid) or {"synced": True})

    result = tasks.check_transcription_status("tr_1")

    assert synced == [record_id]
    assert result["drive"] == {"synced": True}


def test_drive_sync_without_integration_is_recorded(user):
    record_id = _add_row(user.id, status="completed", transcription_text="hello")

    assert tasks.sync_transcription_to_drive(record_id) == {"synced": False, "reason": "not_connected"}
    with session_scope() as session:
        assert session.get(Transcription, record_id).extra_metadata["drive_sync_error"]


class RecordingQueue:
    def __init__(self) -> None:
        self.calls = []

    def enqueue_in(self, delay, func, *args, **kwargs):
        self.calls.append((delay, func, args, kwargs))
        return type("Job", (), {"id": f"job-{len(self.calls)}"})()


def test_schedule_status_checks_enqueues_one_job_per_delay():
    queue = RecordingQueue()

    job_ids = tasks.schedule_status_checks("tr_1", queue=queue)

    assert job_ids == ["job-1", "job-2", "job-3"]
    assert [call[0] for call in queue.calls] == [
        timedelta(seconds=20),
        timedelta(seconds=60),
        timedelta(seconds=180),
    ]
    delay, func, args, kwargs = queue.calls[0]
    assert func is tasks.check_transcription_status
    assert args == ("tr_1",)
    assert kwargs["attempt"] == 1
    assert kwargs["meta"] == {"transcript_id": "tr_1", "attempt": 1}


def test_inmemory_queue_executes_jobs_and_updates_meta():
    queue = InMemoryQueue("default", connection=InMemoryRedis.from_url("memory://tests"))

    def sample_job() -> str:
        job = tasks.get_current_job()
        assert job is not None
        job.meta["status"] = "checking"
        job.save_meta()
        return "done"

    job = queue.enqueue(sample_job)
    drain_completed_jobs(timeout=0.5)

    assert job.get_status(refresh=False) == "finished"
    assert job.result == "done"
    assert job.meta["status"] == "finished"
    assert queue.fetch_job(job.id) is None


def test_inmemory_queue_forgets_finished_jobs():
    queue = InMemoryQueue("default")

    jobs = [queue.enqueue(lambda: None) for _ in range(50)]
    drain_completed_jobs(timeout=2.0)

    assert all(job.get_status() == "finished" for job in jobs)
    assert InMemoryRedis.jobs() == []
    assert queue.count == 0


def test_inmemory_queue_delays_and_cancels_jobs():
    queue = InMemoryQueue("default")
    calls = []

    job = queue.enqueue_in(timedelta(seconds=60), calls.append, "late", job_timeout=30)

    assert job.get_status() == "scheduled"
    assert queue.count == 1
    assert queue.fetch_job(job.id) is job
    job.cancel()
    assert job.get_status() == "canceled"
    assert queue.count == 0
    assert queue.fetch_job(job.id) is None
    assert calls == []


def test_failed_inmemory_job_keeps_error():
    queue = InMemoryQueue("default")

    def broken() -> None:
        raise RuntimeError("boom")

    job = queue.enqueue(broken)
    drain_completed_jobs(timeout=0.5)

    assert job.get_status() == "failed"
    assert job.meta["error_message"] == "boom"


def test_memory_backend_is_selected_in_tests():
    queue, used_fallback = obtain_queue()
    assert used_fallback is True
    assert queue_length(queue) == 0
