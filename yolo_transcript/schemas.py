"""Request and response models for the HTTP API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    full_name: Optional[str] = None
    is_active: bool
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthStatus(BaseModel):
    user_id: str
    authenticated: bool = True
    has_credits: bool
    credits: int


class DiarizationOptions(BaseModel):
    speakers_expected: Optional[int] = Field(default=None, ge=1, le=10)


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_url: str = Field(validation_alias=AliasChoices("audio_url", "audioUrl"))
    file_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("file_name", "fileName"))
    file_size: Optional[int] = Field(default=None, ge=0, validation_alias=AliasChoices("file_size", "fileSize"))
    file_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("file_type", "fileType"))
    storage_key: Optional[str] = None
    duration_seconds: Optional[float] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("duration_seconds", "durationInSeconds", "duration"),
    )
    diarization_options: Optional[DiarizationOptions] = None
    custom_vocabulary: List[str] = Field(default_factory=list)
    vocabulary_id: Optional[str] = None
    sentiment_analysis: bool = False
    sync_to_drive: Optional[bool] = None


class TranscribeUrlRequest(BaseModel):
    url: str
    diarization_options: Optional[DiarizationOptions] = None
    custom_vocabulary: List[str] = Field(default_factory=list)
    vocabulary_id: Optional[str] = None
    sentiment_analysis: bool = False
    sync_to_drive: Optional[bool] = None


class TranscribeResponse(BaseModel):
    id: str
    transcript_id: str
    status: str
    credits_used: int


class UploadResponse(BaseModel):
    url: str
    storage_key: str
    file_name: str
    file_size: int
    file_type: Optional[str] = None


class TranscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    transcript_id: str
    status: str
    file_name: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    duration: Optional[float] = None
    transcription_text: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("extra_metadata", "metadata"))
    quality_score: Optional[int] = None
    reviewed: bool = False
    reviewed_at: Optional[datetime] = None
    reviewer_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class UtteranceEdit(BaseModel):
    utterance_id: Optional[str] = None
    text: Optional[str] = None
    original_text: Optional[str] = None


class SpeakerLabelsUpdate(BaseModel):
    labels: Dict[str, str]


class CreditActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    duration_in_seconds: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("duration_in_seconds", "durationInSeconds"),
    )
    transcription_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("transcription_id", "transcriptionId"),
    )


class CreditCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str = "check"
    credits_needed: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("credits_needed", "creditsNeeded"),
    )


class CreditSummary(BaseModel):
    credits_balance: int = 0
    total_credits_purchased: int = 0
    total_credits_used: int = 0
    purchase_count: int = 0
    usage_count: int = 0


class TrialStatus(BaseModel):
    is_trial_active: bool
    trial_credits_remaining: int
    message: str


class VocabularyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    terms: List[str] = Field(min_length=1)
    is_default: bool = False


class VocabularyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    terms: Optional[List[str]] = None
    is_default: Optional[bool] = None


class VocabularyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    terms: List[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime


class VocabularyShareCode(BaseModel):
    code: str


class QualityReview(BaseModel):
    quality_score: int = Field(ge=1, le=5)
    reviewer_notes: Optional[str] = None


class IntegrationRead(BaseModel):
    id: str
    provider: str
    status: str
    connected_at: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class IntegrationSettingsUpdate(BaseModel):
    # Values are validated by hand so the API can answer with specific messages.
    auto_save: Any = None
    folder_path: Any = None
    sync_frequency: Any = None


class DriveRefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class DriveSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(validation_alias=AliasChoices("file_id", "fileId"))
    file_name: str = Field(validation_alias=AliasChoices("file_name", "fileName"))
    file_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("file_type", "fileType"))
    file_url: str = Field(validation_alias=AliasChoices("file_url", "fileUrl"))


class PriceVerification(BaseModel):
    price_id: str
    is_price_valid: bool
    environment: Literal["sandbox", "production"]
    client_token_exists: bool
    variable_name: Optional[str] = None
    is_format_valid: bool
