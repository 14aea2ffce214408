"""Domain exceptions raised by the service layer and translated by the routers."""
from __future__ import annotations

from typing import Any


class YoloTranscriptError(Exception):
    """Base class for every error raised by the service layer."""


class ConfigurationError(YoloTranscriptError):
    """A required credential or setting for an integration is missing."""


class InsufficientCreditsError(YoloTranscriptError):
    def __init__(self, needed: int, available: int) -> None:
        super().__init__(f"Insufficient credits: {needed} needed, {available} available")
        self.needed = needed
        self.available = available


class SignatureVerificationError(YoloTranscriptError):
    """The payment webhook signature is missing, malformed or wrong."""


class IntegrationNotConnectedError(YoloTranscriptError):
    pass


class ProviderError(YoloTranscriptError):
    """An upstream HTTP API answered with an error or could not be reached."""

    provider = "upstream"

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AssemblyAIError(ProviderError):
    provider = "assemblyai"


class PaddleAPIError(ProviderError):
    provider = "paddle"


class GoogleDriveError(ProviderError):
    provider = "google_drive"


class SanityError(ProviderError):
    provider = "sanity"
