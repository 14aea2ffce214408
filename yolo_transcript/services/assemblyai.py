"""Thin httpx client for the AssemblyAI v2 REST API."""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import get_settings
from ..exceptions import AssemblyAIError, ConfigurationError

logger = logging.getLogger(__name__)


class AssemblyAIClient:
    """Upload media, submit transcription jobs and poll their status."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.assemblyai.com/v2",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("AssemblyAI API key not configured")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"authorization": api_key},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "AssemblyAIClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise AssemblyAIError(f"AssemblyAI request failed: {exc}") from exc
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": response.text}
            message = payload.get("error") if isinstance(payload, dict) else None
            raise AssemblyAIError(
                message or f"AssemblyAI returned HTTP {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )
        return response.json()

    def upload(self, content: bytes) -> str:
        """Upload raw media bytes and return the private ``upload_url``."""

        payload = self._request(
            "POST",
            "/upload",
            content=content,
            headers={"content-type": "application/octet-stream"},
        )
        return payload["upload_url"]

    def submit_transcript(
        self,
        audio_url: str,
        *,
        speakers_expected: Optional[int] = None,
        word_boost: Optional[Sequence[str]] = None,
        sentiment_analysis: bool = False,
        language_code: str = "en",
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "audio_url": audio_url,
            "language_code": language_code,
            "punctuate": True,
            "format_text": True,
            "speaker_labels": True,
            "sentiment_analysis": bool(sentiment_analysis),
        }
        if speakers_expected:
            body["speakers_expected"] = int(speakers_expected)
        terms = [term.strip() for term in word_boost or [] if term and term.strip()]
        if terms:
            body["word_boost"] = terms
            body["boost_param"] = "high"
        payload = self._request("POST", "/transcript", json=body)
        logger.info("Submitted transcript", extra={"transcript_id": payload.get("id")})
        return payload

    def get_transcript(self, transcript_id: str) -> dict[str, Any]:
        return self._request("GET", f"/transcript/{transcript_id}")

    def create_realtime_token(self, expires_in: int = 3600) -> str:
        payload = self._request("POST", "/realtime/token", json={"expires_in": expires_in})
        return payload["token"]


def get_assemblyai_client() -> AssemblyAIClient:
    """Build a client from settings; routers use this as a FastAPI dependency."""

    settings = get_settings()
    api_key = settings.assemblyai_api_key.get_secret_value() if settings.assemblyai_api_key else ""
    return AssemblyAIClient(
        api_key,
        settings.assemblyai_base_url,
        timeout=settings.http_timeout_seconds,
    )
