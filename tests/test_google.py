from __future__ import annotations

import base64
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from yolo_transcript.database import session_scope
from yolo_transcript.exceptions import GoogleDriveError, IntegrationNotConnectedError
from yolo_transcript.models import Integration, Transcription
from yolo_transcript.services import google
from yolo_transcript.taskqueue import tasks


class FakeGoogle:
    """In-memory Google OAuth + Drive endpoints."""

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str], str] = {}
        self.uploads: list[dict] = []
        self.deleted: list[str] = []
        self.revoked: list[str] = []
        self.token_requests: list[dict] = []
        self.upload_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?", 1)[0]
        if url == google.TOKEN_ENDPOINT:
            form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
            self.token_requests.append(form)
            if form["grant_type"] == "authorization_code":
                return httpx.Response(
                    200, json={"access_token": "ya29.first", "refresh_token": "1//refresh", "expires_in": 3600}
                )
            return httpx.Response(200, json={"access_token": "ya29.refreshed", "expires_in": 3600})
        if url == google.REVOKE_ENDPOINT:
            self.revoked.append(request.url.params["token"])
            return httpx.Response(200)
        if url == google.USERINFO_ENDPOINT:
            return httpx.Response(200, json={"email": "new.person@example.com", "email_verified": True, "name": "New"})
        if url == google.DRIVE_UPLOAD_ENDPOINT:
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"error": {"message": "nope"}})
            self.uploads.append({"params": dict(request.url.params), "body": request.content})
            file_id = f"file-{len(self.uploads)}"
            return httpx.Response(
                200,
                json={"id": file_id, "name": "upload", "webViewLink": f"https://drive.google.com/file/d/{file_id}"},
            )
        if url == google.DRIVE_FILES_ENDPOINT and request.method == "POST":
            body = json.loads(request.content)
            folder_id = f"folder-{body['name']}"
            self.folders[(body["parents"][0], body["name"])] = folder_id
            return httpx.Response(200, json={"id": folder_id})
        if url == google.DRIVE_FILES_ENDPOINT and request.method == "GET":
            query = request.url.params["q"]
            if google.FOLDER_MIME_TYPE in query:
                name = query.split("name='", 1)[1].split("'", 1)[0]
                parent = query.split(" in parents", 1)[0].rsplit("'", 2)[-2]
                folder_id = self.folders.get((parent, name))
                return httpx.Response(200, json={"files": [{"id": folder_id, "name": name}] if folder_id else []})
            return httpx.Response(200, json={"files": [{"id": "file-1", "name": "meeting_transcript.txt"}]})
        if url.startswith(google.DRIVE_FILES_ENDPOINT + "/") and request.method == "DELETE":
            self.deleted.append(url.rsplit("/", 1)[-1])
            return httpx.Response(204)
        return httpx.Response(404)

    def oauth(self) -> google.GoogleOAuthClient:
        return google.GoogleOAuthClient("client-id", "client-secret", transport=httpx.MockTransport(self.handler))

    def drive_factory(self) -> google.DriveClientFactory:
        transport = httpx.MockTransport(self.handler)
        return lambda token: google.GoogleDriveClient(token, transport=transport)


@pytest.fixture()
def fake_google(monkeypatch):
    from yolo_transcript.main import app

    fake = FakeGoogle()
    app.dependency_overrides[google.get_oauth_client] = fake.oauth
    app.dependency_overrides[google.get_drive_client_factory] = fake.drive_factory
    monkeypatch.setattr(google, "get_oauth_client", fake.oauth)
    monkeypatch.setattr(google, "get_drive_client_factory", fake.drive_factory)
    yield fake


def _connected_integration(user_id: str, **settings) -> None:
    with session_scope() as session:
        session.add(
            Integration(
                id=Integration.make_id("google_drive", user_id),
                user_id=user_id,
                provider="google_drive",
                status="connected",
                settings={
                    "tokens": {"access_token": "ya29.first", "refresh_token": "1//refresh", "expires_at": None},
                    **settings,
                },
            )
        )


def test_decode_data_url():
    payload = base64.b64encode(b"hello").decode()
    assert google.decode_data_url(f"data:text/plain;base64,{payload}") == (b"hello", "text/plain")
    assert google.decode_data_url("data:,a%20b") == (b"a b", None)
    with pytest.raises(ValueError):
        google.decode_data_url("https://example.com/file.txt")
    with pytest.raises(ValueError):
        google.decode_data_url("data:text/plain;base64,!!!")


def test_token_helpers():
    tokens = google.tokens_from_response({"access_token": "a", "expires_in": 10}, "keep-me")
    assert tokens["refresh_token"] == "keep-me"
    assert google.token_expired({"expires_at": 1000}, now=950)
    assert not google.token_expired({"expires_at": 1000}, now=900)
    assert not google.token_expired({"expires_at": None})


def test_fresh_access_token_refreshes_expired_tokens(fake_google):
    integration = Integration(
        id="google_drive-u",
        user_id="u",
        provider="google_drive",
        status="connected",
        settings={"tokens": {"access_token": "old", "refresh_token": "1//refresh", "expires_at": 1}},
    )

    assert google.fresh_access_token(integration, fake_google.oauth()) == "ya29.refreshed"
    assert integration.settings["tokens"]["refresh_token"] == "1//refresh"
    assert fake_google.token_requests[0]["grant_type"] == "refresh_token"

    integration.status = "disconnected"
    with pytest.raises(IntegrationNotConnectedError):
        google.fresh_access_token(integration, fake_google.oauth())


def test_ensure_folder_creates_missing_segments(fake_google):
    drive = fake_google.drive_factory()("token")
    try:
        assert drive.ensure_folder("/Transcriptions/2024") == "folder-2024"
        assert drive.ensure_folder("Transcriptions/2024/") == "folder-2024"
    finally:
        drive.close()
    assert fake_google.folders == {("root", "Transcriptions"): "folder-Transcriptions", ("folder-Transcriptions", "2024"): "folder-2024"}


def test_upload_errors_have_friendly_messages(fake_google):
    fake_google.upload_status = 403
    drive = fake_google.drive_factory()("token")
    with pytest.raises(GoogleDriveError) as excinfo:
        drive.upload_file("a.txt", b"a", "text/plain", "root")
    assert str(excinfo.value).startswith("Permission denied")
    assert excinfo.value.status_code == 403


def test_drive_oauth_flow_and_management(client, user, fake_google):
    response = client.get("/api/integrations/google-drive")
    url = response.json()["authorization_url"]
    query = parse_qs(urlparse(url).query)
    assert query["access_type"] == ["offline"]
    assert "https://www.googleapis.com/auth/drive.file" in query["scope"][0]
    state = query["state"][0]

    response = client.get(
        "/api/integrations/google-drive/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"].endswith("/dashboard/integrations?success=true")

    status = client.get("/api/integrations/google-drive/status").json()
    assert status["connected"] is True
    assert "tokens" not in status["integration"]["settings"]
    with session_scope() as session:
        stored = session.get(Integration, Integration.make_id("google_drive", user.id))
        assert stored.settings["tokens"]["refresh_token"] == "1//refresh"
        assert stored.settings["oauth_state"] is None

    assert client.put("/api/integrations/google-drive/settings", json={"sync_frequency": "hourly"}).status_code == 400
    assert client.put("/api/integrations/google-drive/settings", json={"auto_save": "yes"}).status_code == 400
    response = client.put(
        "/api/integrations/google-drive/settings",
        json={"auto_save": True, "folder_path": "/Meetings"},
    )
    assert response.json()["settings"] == {"auto_save": True, "folder_path": "/Meetings"}

    files = client.get("/api/integrations/google-drive/files").json()
    assert files["folder_path"] == "/Meetings"
    assert files["files"][0]["id"] == "file-1"

    assert client.delete("/api/integrations/google-drive/files/file-9").json() == {"success": True, "file_id": "file-9"}
    assert fake_google.deleted == ["file-9"]

    response = client.post("/api/integrations/google-drive/disconnect")
    assert response.json() == {"success": True, "revoked": True}
    assert fake_google.revoked == ["1//refresh"]
    assert client.get("/api/integrations/google-drive/status").json()["connected"] is False


def test_refresh_token_route_persists_new_access_token(client, user, fake_google):
    assert client.post("/api/integrations/google-drive/refresh-token").status_code == 404
    _connected_integration(user.id)

    response = client.post("/api/integrations/google-drive/refresh-token")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["expires_at"] > time.time()
    assert fake_google.token_requests[-1]["grant_type"] == "refresh_token"
    assert fake_google.token_requests[-1]["refresh_token"] == "1//refresh"
    with session_scope() as session:
        tokens = session.get(Integration, Integration.make_id("google_drive", user.id)).settings["tokens"]
        assert tokens["access_token"] == "ya29.refreshed"
        assert tokens["refresh_token"] == "1//refresh"
        assert tokens["expires_at"] == body["expires_at"]

    response = client.post("/api/integrations/google-drive/refresh-token", json={"refresh_token": "1//rotated"})
    assert response.status_code == 200
    assert fake_google.token_requests[-1]["refresh_token"] == "1//rotated"


@pytest.mark.parametrize(
    ("params", "error"),
    [
        ({"error": "access_denied"}, "oauth_error"),
        ({"code": "abc"}, "invalid_callback"),
        ({"code": "abc", "state": "short"}, "invalid_state"),
        ({"code": "abc", "state": "a" * 64}, "integration_not_found"),
    ],
)
def test_drive_callback_errors_redirect(anonymous_client, fake_google, params, error):
    response = anonymous_client.get(
        "/api/integrations/google-drive/callback", params=params, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"].endswith(f"error={error}")


def test_sync_uploads_data_url_and_marks_transcription(client, user, fake_google):
    _connected_integration(user.id, folder_path="/Transcriptions")
    with session_scope() as session:
        record = Transcription(user_id=user.id, transcript_id="tr_1", file_name="call.mp3")
        session.add(record)
        session.flush()
        record_id = record.id

    payload = base64.b64encode(b"transcript body").decode()
    response = client.post(
        "/api/integrations/google-drive/sync",
        json={
            "fileId": record_id,
            "fileName": "call_transcript.txt",
            "fileUrl": f"data:text/plain;base64,{payload}",
        },
    )

    assert response.status_code == 200
    assert response.json()["file_id"] == "file-1"
    assert b"transcript body" in fake_google.uploads[0]["body"]
    assert fake_google.uploads[0]["params"]["uploadType"] == "multipart"
    with session_scope() as session:
        metadata = session.get(Transcription, record_id).extra_metadata
        assert metadata["synced_to_drive"] is True
        assert metadata["drive_file_link"] == "https://drive.google.com/file/d/file-1"

    bad = client.post(
        "/api/integrations/google-drive/sync",
        json={"fileId": record_id, "fileName": "x.txt", "fileUrl": "ftp://example.com/x"},
    )
    assert bad.status_code == 400


def test_background_sync_uploads_completed_transcript(user, fake_google):
    _connected_integration(user.id)
    with session_scope() as session:
        record = Transcription(
            user_id=user.id,
            transcript_id="tr_1",
            file_name="interview.wav",
            status="completed",
            transcription_text="Q and A",
        )
        session.add(record)
        session.flush()
        record_id = record.id

    result = tasks.sync_transcription_to_drive(record_id)

    assert result == {"synced": True, "drive_file_id": "file-1"}
    assert b'"name": "interview_transcript.txt"' in fake_google.uploads[0]["body"]
    with session_scope() as session:
        assert session.get(Transcription, record_id).extra_metadata["synced_to_drive"] is True
        assert session.get(Integration, Integration.make_id("google_drive", user.id)).last_sync is not None
