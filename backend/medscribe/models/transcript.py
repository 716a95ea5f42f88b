"""SQLAlchemy model for transcript records and their lifecycle values.

A record moves through ``pending -> processing -> completed|failed``.  The
``*_values`` helpers below return the complete set of columns written by each
transition so that every writer (the worker's guarded ``UPDATE`` statements
as well as the request-side services) keeps these pairs in lock-step:

* ``structured_data`` and ``processed_at`` are set iff status is ``completed``
* ``error_message`` is set iff status is ``failed``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Enum as SAEnum, String, Text

from medscribe.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptStatus(str, Enum):
    """Lifecycle of a transcript record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def options(cls) -> list[str]:
        return [status.value for status in cls]


class Transcript(Base):
    """
    One uploaded handwritten medical document and its transcription outcome.

    ``image_key`` points into the blob store; it is replaced wholesale when a
    new image is uploaded.  ``active_chain_id`` identifies the attempt chain
    that is currently allowed to drive the record; jobs from any other chain
    find their guarded updates matching zero rows.
    """
    __tablename__ = "transcripts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), comment="Opaque identifier assigned at creation.")
    title = Column(String(255), nullable=False, comment="User supplied title.")
    description = Column(Text, nullable=True, comment="Optional user supplied description.")
    image_key = Column(String(255), nullable=False, comment="Blob store key of the current source image.")
    content_type = Column(String(50), nullable=False, comment="Canonical MIME type of the stored image.")
    structured_data = Column(JSON(none_as_null=True), nullable=True, comment="Validated transcription tree, set only when completed.")
    status = Column(
        SAEnum(TranscriptStatus, values_callable=lambda e: [m.value for m in e], name="transcript_status"),
        nullable=False,
        default=TranscriptStatus.PENDING,
        index=True,
    )
    error_message = Column(Text, nullable=True, comment="User-safe failure message, set only when failed.")
    processed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    active_chain_id = Column(String(36), nullable=True, comment="Attempt chain currently allowed to process this record.")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True, comment="Soft-delete marker.")

    # Helper to convert enum to plain string for JSON responses
    @property
    def status_str(self) -> str:
        return self.status.value if isinstance(self.status, TranscriptStatus) else str(self.status)

    @property
    def is_pending(self) -> bool:
        return self.status == TranscriptStatus.PENDING

    @property
    def is_processing(self) -> bool:
        return self.status == TranscriptStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self.status == TranscriptStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == TranscriptStatus.FAILED

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def formatted_transcript(self) -> Optional[dict[str, Any]]:
        """The structured data, or ``None`` unless the record is completed."""
        if not self.is_completed or not self.structured_data:
            return None
        return self.structured_data

    # ------------------------------------------------------------------
    # Transition value sets
    # ------------------------------------------------------------------

    @staticmethod
    def processing_values() -> dict[str, Any]:
        return {"status": TranscriptStatus.PROCESSING, "updated_at": utcnow()}

    @staticmethod
    def completion_values(data: dict[str, Any]) -> dict[str, Any]:
        now = utcnow()
        return {
            "status": TranscriptStatus.COMPLETED,
            "structured_data": data,
            "processed_at": now,
            "error_message": None,
            "updated_at": now,
        }

    @staticmethod
    def failure_values(message: str) -> dict[str, Any]:
        return {
            "status": TranscriptStatus.FAILED,
            "error_message": message,
            "structured_data": None,
            "processed_at": None,
            "updated_at": utcnow(),
        }

    @staticmethod
    def reset_values(chain_id: str) -> dict[str, Any]:
        return {
            "status": TranscriptStatus.PENDING,
            "structured_data": None,
            "error_message": None,
            "processed_at": None,
            "active_chain_id": chain_id,
            "updated_at": utcnow(),
        }

    def apply(self, values: dict[str, Any]) -> None:
        """Copy a transition value set onto this instance."""
        for key, value in values.items():
            setattr(self, key, value)
