"""Google OAuth2 and Drive v3 clients used by sign-in and the Drive integration."""
from __future__ import annotations

import base64
import binascii
import json
import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Any, Callable, Optional, Sequence
from urllib.parse import unquote_to_bytes, urlencode

import httpx

from ..config import get_settings
from ..exceptions import ConfigurationError, GoogleDriveError, IntegrationNotConnectedError
from ..models import Integration, IntegrationStatus

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
REVOKE_ENDPOINT = "https://oauth2.googleapis.com/revoke"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v3/userinfo"
DRIVE_FILES_ENDPOINT = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_ENDPOINT = "https://www.googleapis.com/upload/drive/v3/files"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

DRIVE_SCOPES = (
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)
SIGN_IN_SCOPES = ("openid", "email", "profile")

_UPLOAD_ERRORS = {
    401: "Google Drive authorization error. Please reconnect your account.",
    403: "Permission denied. The app may not have sufficient access to upload files.",
    404: "The folder path was not found in Google Drive.",
    429: "Rate limit exceeded. Please try again later.",
}


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ConfigurationError("Google OAuth client is not configured")
        self.client_id = client_id
        self._client_secret = client_secret
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def authorization_url(self, redirect_uri: str, state: str, scopes: Sequence[str], **extra: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        params.update(extra)
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        data = {"client_id": self.client_id, "client_secret": self._client_secret, **data}
        try:
            response = self._client.post(TOKEN_ENDPOINT, data=data)
        except httpx.HTTPError as exc:
            raise GoogleDriveError(f"Token request failed: {exc}") from exc
        if response.status_code >= 400:
            raise GoogleDriveError(
                "Token request rejected",
                status_code=response.status_code,
                payload=response.text,
            )
        return response.json()

    def exchange_code(self, code: str, redirect_uri: str) -> dict[str, Any]:
        return self._token_request(
            {"code": code, "redirect_uri": redirect_uri, "grant_type": "authorization_code"}
        )

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        return self._token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})

    def revoke(self, token: str) -> bool:
        try:
            response = self._client.post(REVOKE_ENDPOINT, params={"token": token})
        except httpx.HTTPError as exc:
            logger.warning("Token revocation failed", extra={"error": str(exc)})
            return False
        return response.status_code < 400

    def userinfo(self, access_token: str) -> dict[str, Any]:
        response = self._client.get(USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {access_token}"})
        if response.status_code >= 400:
            raise GoogleDriveError("Failed to fetch Google user info", status_code=response.status_code)
        return response.json()


class GoogleDriveClient:
    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _check(self, response: httpx.Response, message: str) -> None:
        if response.status_code >= 400:
            raise GoogleDriveError(message, status_code=response.status_code, payload=response.text)

    def find_folder(self, name: str, parent_id: str) -> Optional[str]:
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        query = f"name='{escaped}' and mimeType='{FOLDER_MIME_TYPE}' and '{parent_id}' in parents and trashed=false"
        response = self._client.get(DRIVE_FILES_ENDPOINT, params={"q": query, "fields": "files(id,name)"})
        self._check(response, "Failed to check folder existence")
        files = response.json().get("files") or []
        return files[0]["id"] if files else None

    def create_folder(self, name: str, parent_id: str) -> str:
        response = self._client.post(
            DRIVE_FILES_ENDPOINT,
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        self._check(response, "Failed to create folder")
        return response.json()["id"]

    def ensure_folder(self, folder_path: str) -> str:
        """Walk ``folder_path`` from the Drive root, creating missing folders."""

        parent_id = "root"
        for part in [segment for segment in folder_path.split("/") if segment]:
            folder_id = self.find_folder(part, parent_id)
            if folder_id is None:
                folder_id = self.create_folder(part, parent_id)
            parent_id = folder_id
        return parent_id

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        response = self._client.get(
            DRIVE_FILES_ENDPOINT,
            params={
                "q": f"'{folder_id}' in parents and trashed=false",
                "fields": "files(id,name,mimeType,webViewLink,createdTime,modifiedTime)",
            },
        )
        self._check(response, "Failed to list files from Google Drive")
        return response.json().get("files") or []

    def delete_file(self, file_id: str) -> None:
        response = self._client.delete(f"{DRIVE_FILES_ENDPOINT}/{file_id}")
        self._check(response, "Failed to delete file from Google Drive")

    def upload_file(self, name: str, content: bytes, mime_type: str, folder_id: str) -> dict[str, Any]:
        boundary = f"yolo-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": name, "mimeType": mime_type, "parents": [folder_id]})
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode("utf-8"),
                metadata.encode("utf-8"),
                f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode("utf-8"),
                content,
                f"\r\n--{boundary}--".encode("utf-8"),
            ]
        )
        response = self._client.post(
            DRIVE_UPLOAD_ENDPOINT,
            params={"uploadType": "multipart", "fields": "id,name,mimeType,webViewLink"},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        if response.status_code >= 400:
            message = _UPLOAD_ERRORS.get(response.status_code)
            if message is None:
                try:
                    detail = response.json().get("error", {}).get("message")
                except ValueError:
                    detail = None
                message = f"Failed to upload file to Google Drive: {detail or response.reason_phrase}"
            raise GoogleDriveError(message, status_code=response.status_code, payload=response.text)
        return response.json()


DriveClientFactory = Callable[[str], GoogleDriveClient]


def get_oauth_client() -> GoogleOAuthClient:
    settings = get_settings()
    secret = settings.google_client_secret.get_secret_value() if settings.google_client_secret else ""
    return GoogleOAuthClient(settings.google_client_id or "", secret, timeout=settings.http_timeout_seconds)


def get_drive_client_factory() -> DriveClientFactory:
    timeout = get_settings().http_timeout_seconds
    return lambda access_token: GoogleDriveClient(access_token, timeout=timeout)


def tokens_from_response(payload: dict[str, Any], previous_refresh_token: Optional[str] = None) -> dict[str, Any]:
    """Normalise a token endpoint answer; ``expires_at`` is epoch seconds."""

    expires_in = payload.get("expires_in")
    return {
        "access_token": payload.get("access_token"),
        "refresh_token": payload.get("refresh_token") or previous_refresh_token,
        "expires_at": time.time() + float(expires_in) if expires_in else None,
    }


def token_expired(tokens: dict[str, Any], leeway: float = 60.0, now: Optional[float] = None) -> bool:
    expires_at = tokens.get("expires_at")
    if not expires_at:
        return False
    return (time.time() if now is None else now) >= float(expires_at) - leeway


def fresh_access_token(integration: Integration, oauth: GoogleOAuthClient, *, force: bool = False) -> str:
    """Return a usable access token, refreshing and persisting it when expired."""

    if integration.status != IntegrationStatus.CONNECTED.value:
        raise IntegrationNotConnectedError("Google Drive is not connected")
    tokens = dict((integration.settings or {}).get("tokens") or {})
    if not tokens.get("access_token"):
        raise IntegrationNotConnectedError("No access token available")
    if force or token_expired(tokens):
        refresh_token = tokens.get("refresh_token")
        if not refresh_token:
            raise IntegrationNotConnectedError("No refresh token available")
        tokens = tokens_from_response(oauth.refresh(refresh_token), refresh_token)
        integration.merge_settings(tokens=tokens)
        logger.info("Refreshed Google Drive token", extra={"integration_id": integration.id})
    return tokens["access_token"]


def folder_path_for(integration: Integration) -> str:
    return (integration.settings or {}).get("folder_path") or get_settings().google_drive_default_folder


def upload_for_integration(
    integration: Integration,
    oauth: GoogleOAuthClient,
    drive_factory: DriveClientFactory,
    *,
    file_name: str,
    content: bytes,
    mime_type: str,
) -> dict[str, Any]:
    access_token = fresh_access_token(integration, oauth)
    drive = drive_factory(access_token)
    try:
        folder_id = drive.ensure_folder(folder_path_for(integration))
        uploaded = drive.upload_file(file_name, content, mime_type, folder_id)
    finally:
        drive.close()
    integration.last_sync = datetime.now(UTC)
    logger.info(
        "Uploaded file to Google Drive",
        extra={"integration_id": integration.id, "file_name": file_name, "size": len(content)},
    )
    return uploaded


def decode_data_url(url: str) -> tuple[bytes, Optional[str]]:
    """Decode a ``data:[<mime>][;base64],<payload>`` URL."""

    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("Invalid data URL")
    meta = header[len("data:") :].split(";")
    mime_type = meta[0] or None
    if "base64" in meta[1:]:
        try:
            return base64.b64decode(payload, validate=True), mime_type
        except binascii.Error as exc:
            raise ValueError("Invalid base64 payload") from exc
    return unquote_to_bytes(payload), mime_type
