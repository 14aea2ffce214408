from __future__ import annotations

import logging
import re
import secrets
from datetime import UTC, datetime
from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import AuthenticatedUser, get_current_user
from ..config import get_settings
from ..database import get_session
from ..exceptions import IntegrationNotConnectedError, ProviderError
from ..models import Integration, IntegrationProvider, IntegrationStatus, Transcription
from ..schemas import DriveRefreshRequest, DriveSyncRequest, IntegrationRead, IntegrationSettingsUpdate
from ..services import google

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations/google-drive", tags=["integrations"])

SYNC_FREQUENCIES = ("realtime", "daily", "weekly")
_STATE_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def _oauth_client(
    client: google.GoogleOAuthClient = Depends(google.get_oauth_client),
) -> Iterator[google.GoogleOAuthClient]:
    try:
        yield client
    finally:
        client.close()


def _integration_id(user_id: str) -> str:
    return Integration.make_id(IntegrationProvider.GOOGLE_DRIVE.value, user_id)


def _get_integration(session: Session, user: AuthenticatedUser) -> Integration:
    integration = session.get(Integration, _integration_id(user.id))
    if integration is None:
        raise HTTPException(status_code=404, detail="Google Drive integration not found")
    return integration


def _public_view(integration: Integration) -> IntegrationRead:
    visible = {
        key: value
        for key, value in (integration.settings or {}).items()
        if key not in ("tokens", "oauth_state")
    }
    return IntegrationRead(
        id=integration.id,
        provider=integration.provider,
        status=integration.status,
        connected_at=integration.connected_at,
        last_sync=integration.last_sync,
        settings=visible,
    )


def _access_token(integration: Integration, oauth: google.GoogleOAuthClient, *, force: bool = False) -> str:
    try:
        return google.fresh_access_token(integration, oauth, force=force)
    except IntegrationNotConnectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _redirect(**params: str) -> RedirectResponse:
    base = get_settings().app_url.rstrip("/")
    return RedirectResponse(f"{base}/dashboard/integrations?{urlencode(params)}", status_code=302)


def _load_file_content(file_url: str) -> tuple[bytes, Optional[str]]:
    if file_url.startswith("data:"):
        try:
            return google.decode_data_url(file_url)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    if not file_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="file_url must be a data: or http(s) URL")
    try:
        response = httpx.get(file_url, timeout=get_settings().http_timeout_seconds, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Failed to fetch file for Drive sync", extra={"error": str(exc)})
        raise HTTPException(status_code=400, detail="Failed to download file content")
    return response.content, response.headers.get("content-type")


@router.get("")
def start_oauth(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
) -> Dict[str, str]:
    state = secrets.token_hex(32)
    integration = session.get(Integration, _integration_id(user.id))
    if integration is None:
        integration = Integration(
            id=_integration_id(user.id),
            user_id=user.id,
            provider=IntegrationProvider.GOOGLE_DRIVE.value,
            status=IntegrationStatus.DISCONNECTED.value,
            settings={},
        )
        session.add(integration)
    integration.merge_settings(oauth_state=state)
    session.commit()
    url = oauth.authorization_url(
        get_settings().google_drive_callback_url,
        state,
        google.DRIVE_SCOPES,
        access_type="offline",
        prompt="consent",
    )
    return {"authorization_url": url}


@router.get("/callback")
def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
) -> RedirectResponse:
    """Finish the Drive consent flow; the browser is always redirected to the dashboard."""

    if error:
        logger.warning("Google OAuth returned an error", extra={"error": error})
        return _redirect(error="oauth_error")
    if not code or not state:
        return _redirect(error="invalid_callback")
    if not _STATE_PATTERN.match(state):
        return _redirect(error="invalid_state")

    try:
        integration = (
            session.query(Integration)
            .filter(
                Integration.provider == IntegrationProvider.GOOGLE_DRIVE.value,
                Integration.settings["oauth_state"].as_string() == state,
            )
            .one_or_none()
        )
    except SQLAlchemyError:
        logger.exception("Integration lookup failed")
        return _redirect(error="server_error")
    if integration is None:
        return _redirect(error="integration_not_found")
    if not secrets.compare_digest((integration.settings or {}).get("oauth_state") or "", state):
        return _redirect(error="invalid_state")

    try:
        payload = oauth.exchange_code(code, get_settings().google_drive_callback_url)
    except ProviderError as exc:
        logger.warning("Token exchange failed", extra={"integration_id": integration.id, "error": str(exc)})
        return _redirect(error="token_exchange_failed")

    previous = (integration.settings or {}).get("tokens") or {}
    integration.status = IntegrationStatus.CONNECTED.value
    integration.connected_at = datetime.now(UTC)
    integration.merge_settings(
        tokens=google.tokens_from_response(payload, previous.get("refresh_token")),
        oauth_state=None,
    )
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to store Google Drive tokens")
        return _redirect(error="server_error")
    logger.info("Google Drive connected", extra={"integration_id": integration.id})
    return _redirect(success="true")


@router.get("/status")
def integration_status(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    integration = session.get(Integration, _integration_id(user.id))
    if integration is None:
        return {"connected": False, "integration": None}
    return {
        "connected": integration.status == IntegrationStatus.CONNECTED.value,
        "integration": _public_view(integration).model_dump(mode="json"),
    }


@router.put("/settings", response_model=IntegrationRead)
def update_settings(
    payload: IntegrationSettingsUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> IntegrationRead:
    updates: Dict[str, Any] = {}
    if payload.auto_save is not None:
        if not isinstance(payload.auto_save, bool):
            raise HTTPException(status_code=400, detail="auto_save must be a boolean")
        updates["auto_save"] = payload.auto_save
    if payload.folder_path is not None:
        if not isinstance(payload.folder_path, str) or not payload.folder_path.strip():
            raise HTTPException(status_code=400, detail="folder_path must be a non-empty string")
        updates["folder_path"] = payload.folder_path.strip()
    if payload.sync_frequency is not None:
        if payload.sync_frequency not in SYNC_FREQUENCIES:
            raise HTTPException(
                status_code=400,
                detail=f"sync_frequency must be one of: {', '.join(SYNC_FREQUENCIES)}",
            )
        updates["sync_frequency"] = payload.sync_frequency

    integration = _get_integration(session, user)
    integration.merge_settings(**updates)
    session.commit()
    return _public_view(integration)


@router.post("/disconnect")
def disconnect(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
) -> Dict[str, Any]:
    integration = _get_integration(session, user)
    tokens = (integration.settings or {}).get("tokens") or {}
    token = tokens.get("refresh_token") or tokens.get("access_token")
    revoked = oauth.revoke(token) if token else False
    integration.status = IntegrationStatus.DISCONNECTED.value
    integration.merge_settings(tokens=None, oauth_state=None)
    session.commit()
    logger.info("Google Drive disconnected", extra={"integration_id": integration.id, "revoked": revoked})
    return {"success": True, "revoked": revoked}


@router.post("/refresh-token")
def refresh_token(
    payload: Optional[DriveRefreshRequest] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
) -> Dict[str, Any]:
    integration = _get_integration(session, user)
    if payload is not None and payload.refresh_token:
        tokens = dict((integration.settings or {}).get("tokens") or {})
        tokens["refresh_token"] = payload.refresh_token
        integration.merge_settings(tokens=tokens)
    _access_token(integration, oauth, force=True)
    session.commit()
    expires_at = ((integration.settings or {}).get("tokens") or {}).get("expires_at")
    return {"success": True, "expires_at": expires_at}


@router.get("/files")
def list_files(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
    drive_factory: google.DriveClientFactory = Depends(google.get_drive_client_factory),
) -> Dict[str, Any]:
    integration = _get_integration(session, user)
    drive = drive_factory(_access_token(integration, oauth))
    folder_path = google.folder_path_for(integration)
    try:
        files = drive.list_files(drive.ensure_folder(folder_path))
    finally:
        drive.close()
    session.commit()
    return {"folder_path": folder_path, "files": files}


@router.delete("/files/{file_id}")
def delete_file(
    file_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
    drive_factory: google.DriveClientFactory = Depends(google.get_drive_client_factory),
) -> Dict[str, Any]:
    integration = _get_integration(session, user)
    drive = drive_factory(_access_token(integration, oauth))
    try:
        drive.delete_file(file_id)
    finally:
        drive.close()
    session.commit()
    return {"success": True, "file_id": file_id}


@router.post("/sync")
def sync_file(
    payload: DriveSyncRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    oauth: google.GoogleOAuthClient = Depends(_oauth_client),
    drive_factory: google.DriveClientFactory = Depends(google.get_drive_client_factory),
) -> Dict[str, Any]:
    integration = _get_integration(session, user)
    if integration.status != IntegrationStatus.CONNECTED.value:
        raise HTTPException(status_code=400, detail="Google Drive is not connected")
    content, detected_type = _load_file_content(payload.file_url)
    mime_type = payload.file_type or detected_type or "application/octet-stream"

    try:
        uploaded = google.upload_for_integration(
            integration,
            oauth,
            drive_factory,
            file_name=payload.file_name,
            content=content,
            mime_type=mime_type,
        )
    except IntegrationNotConnectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    transcription = session.get(Transcription, payload.file_id)
    if transcription is not None and transcription.user_id == user.id:
        transcription.merge_metadata(
            synced_to_drive=True,
            drive_file_id=uploaded.get("id"),
            drive_file_link=uploaded.get("webViewLink"),
            drive_sync_error=None,
        )
    session.commit()
    return {
        "success": True,
        "file_id": uploaded.get("id"),
        "file_name": uploaded.get("name", payload.file_name),
        "web_view_link": uploaded.get("webViewLink"),
    }
