from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="yolo-transcript-tests-"))

os.environ.setdefault("YOLO_DATABASE_URL", f"sqlite:///{_TEST_ROOT / 'test.db'}")
os.environ.setdefault("YOLO_QUEUE_BACKEND", "memory")
os.environ.setdefault("YOLO_APP_ENV", "test")
os.environ.setdefault("YOLO_PADDLE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("YOLO_ASSEMBLYAI_API_KEY", "test-key")
os.environ.setdefault("YOLO_STORAGE_DIR", str(_TEST_ROOT / "storage"))
os.environ.setdefault("YOLO_JWT_SECRET_KEY", "test-secret")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from yolo_transcript.auth import AuthenticatedUser, create_user, get_current_user  # noqa: E402
from yolo_transcript.database import get_engine, session_scope  # noqa: E402
from yolo_transcript.models import Base  # noqa: E402
from yolo_transcript.services import assemblyai  # noqa: E402
from yolo_transcript.taskqueue.fallback import cancel_pending_jobs  # noqa: E402

_ASSEMBLYAI_DEPENDENCY = assemblyai.get_assemblyai_client


class FakeAssemblyAI:
    """Answers the AssemblyAI endpoints the app calls, recording every request."""

    def __init__(self) -> None:
        self.transcripts: dict[str, dict] = {}
        self.submitted: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_submit = False
        self.fail_get = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/upload"):
            return httpx.Response(200, json={"upload_url": "https://cdn.assemblyai.test/upload/abc"})
        if request.method == "POST" and path.endswith("/transcript"):
            if self.fail_submit:
                return httpx.Response(500, json={"error": "provider exploded"})
            body = json.loads(request.content)
            self.submitted.append(body)
            self._counter += 1
            transcript_id = f"tr_{self._counter}"
            self.transcripts.setdefault(transcript_id, {"id": transcript_id, "status": "queued"})
            return httpx.Response(200, json={"id": transcript_id, "status": "queued"})
        if request.method == "POST" and path.endswith("/realtime/token"):
            return httpx.Response(200, json={"token": "rt-token"})
        if request.method == "GET" and "/transcript/" in path:
            if self.fail_get:
                return httpx.Response(503, json={"error": "unavailable"})
            transcript_id = path.rsplit("/", 1)[-1]
            payload = self.transcripts.get(transcript_id)
            if payload is None:
                return httpx.Response(404, json={"error": "Transcript not found"})
            return httpx.Response(200, json=payload)
        return httpx.Response(404, json={"error": f"unexpected {request.method} {path}"})

    def client(self) -> assemblyai.AssemblyAIClient:
        return assemblyai.AssemblyAIClient("test-key", transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def reset_database():
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield
    cancel_pending_jobs()


@pytest.fixture()
def user() -> AuthenticatedUser:
    with session_scope() as session:
        record = create_user(session, "owner@example.com", "password123", "Owner")
        return AuthenticatedUser(id=record.id, email=record.email, full_name=record.full_name)


@pytest.fixture()
def other_user() -> AuthenticatedUser:
    with session_scope() as session:
        record = create_user(session, "intruder@example.com", "password123")
        return AuthenticatedUser(id=record.id, email=record.email)


@pytest.fixture()
def fake_assemblyai(monkeypatch) -> FakeAssemblyAI:
    from yolo_transcript.main import app

    fake = FakeAssemblyAI()
    monkeypatch.setattr(assemblyai, "get_assemblyai_client", fake.client)
    app.dependency_overrides[_ASSEMBLYAI_DEPENDENCY] = fake.client
    yield fake
    app.dependency_overrides.pop(_ASSEMBLYAI_DEPENDENCY, None)


@pytest.fixture()
def client(user):
    from yolo_transcript.main import app

    app.dependency_overrides[get_current_user] = lambda: user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def anonymous_client():
    from yolo_transcript.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
