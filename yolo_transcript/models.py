"""SQLAlchemy models for users, transcriptions, credits, integrations and vocabularies."""
from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class TranscriptionStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class IntegrationProvider(str, enum.Enum):
    GOOGLE_DRIVE = "google_drive"
    DROPBOX = "dropbox"
    ONEDRIVE = "onedrive"
    BOX = "box"


class IntegrationStatus(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class User(Base):
    """Account holder. ``hashed_password`` is empty for Google sign-ins."""

    __tablename__ = "users"
    __allow_unmapped__ = True

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    credits: Optional["UserCredits"] = relationship(
        "UserCredits", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    transcriptions: List["Transcription"] = relationship(
        "Transcription", back_populates="user", cascade="all, delete-orphan"
    )


class Transcription(Base):
    """Local mirror of a speech-to-text job."""

    __tablename__ = "transcriptions"
    __allow_unmapped__ = True

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transcript_id = Column(String(128), nullable=False, index=True)
    status = Column(String(32), nullable=False, default=TranscriptionStatus.PROCESSING.value)
    file_name = Column(String(512), nullable=False)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String(128), nullable=True)
    duration = Column(Float, nullable=True)
    transcription_text = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    quality_score = Column(Integer, nullable=True)
    reviewed = Column(Boolean, nullable=False, default=False)
    reviewed_at = Column(DateTime, nullable=True)
    reviewer_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False, index=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    user: User = relationship("User", back_populates="transcriptions")

    @property
    def is_terminal(self) -> bool:
        return self.status in (TranscriptionStatus.COMPLETED.value, TranscriptionStatus.ERROR.value)

    def merge_metadata(self, **values) -> None:
        """Assign a new dict so SQLAlchemy notices the JSON change."""

        merged = dict(self.extra_metadata or {})
        merged.update(values)
        self.extra_metadata = merged


class UserCredits(Base):
    __tablename__ = "user_credits"
    __table_args__ = (CheckConstraint("credits_balance >= 0", name="ck_user_credits_balance_non_negative"),)
    __allow_unmapped__ = True

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    credits_balance = Column(Integer, nullable=False, default=0)
    trial_status = Column(Boolean, nullable=False, default=False)
    trial_credits_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    user: User = relationship("User", back_populates="credits")


class CreditTransaction(Base):
    """Append-only record of a credit purchase."""

    __tablename__ = "credit_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    paddle_transaction_id = Column(String(128), nullable=True, unique=True)
    amount = Column(Float, nullable=False, default=0)
    currency_code = Column(String(8), nullable=False, default="USD")
    status = Column(String(32), nullable=False, default="completed")
    credits_added = Column(Integer, nullable=False)
    package_name = Column(String(120), nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_now, nullable=False)


class CreditUsage(Base):
    """Append-only record of credits consumed by a transcription.

    Refunds are stored as negative entries next to the debit they offset.
    """

    __tablename__ = "credit_usage"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transcription_id = Column(String(128), nullable=True)
    credits_used = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False, default="Transcription processing")
    created_at = Column(DateTime, default=_now, nullable=False)


class Integration(Base):
    """A user's connected cloud-storage account. ``id`` is ``<provider>-<user_id>``."""

    __tablename__ = "integrations"

    id = Column(String(160), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=IntegrationStatus.DISCONNECTED.value)
    connected_at = Column(DateTime, nullable=True)
    last_sync = Column(DateTime, nullable=True)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    @staticmethod
    def make_id(provider: str, user_id: str) -> str:
        return f"{provider}-{user_id}"

    def merge_settings(self, **values) -> None:
        merged = dict(self.settings or {})
        merged.update(values)
        self.settings = merged


class CustomVocabulary(Base):
    __tablename__ = "custom_vocabularies"
    __table_args__ = (
        Index(
            "uq_custom_vocabularies_default_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    terms = Column(JSON, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


__all__ = [
    "Base",
    "CreditTransaction",
    "CreditUsage",
    "CustomVocabulary",
    "Integration",
    "IntegrationProvider",
    "IntegrationStatus",
    "Transcription",
    "TranscriptionStatus",
    "User",
    "UserCredits",
]
