"""SQLAlchemy model for individual transcription attempts.

Only a subset of metadata is tracked: enough to reconstruct an attempt chain
(which chain, which attempt, how it ended) for support and for the attempt
history endpoint.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text

from medscribe.db.base import Base
from medscribe.models.transcript import utcnow


class AttemptOutcome(str, Enum):
    """How a single job execution ended."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TranscriptionAttempt(Base):
    """Persistent representation of one execution of the transcription job."""

    __tablename__ = "transcription_attempts"

    id: int = Column(Integer, primary_key=True, autoincrement=True, index=True)
    transcript_id: str = Column(String(36), ForeignKey("transcripts.id"), nullable=False, index=True)
    chain_id: str = Column(String(36), nullable=False, index=True)
    attempt_number: int = Column(Integer, nullable=False)
    outcome: AttemptOutcome = Column(
        SAEnum(AttemptOutcome, values_callable=lambda e: [m.value for m in e], name="attempt_outcome"),
        nullable=False,
        default=AttemptOutcome.RUNNING,
    )
    error_kind: Optional[str] = Column(String(20), nullable=True)
    # Internal diagnostic text; never shown to end users.
    error_detail: Optional[str] = Column(Text, nullable=True)
    started_at: datetime = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)

    @property
    def outcome_str(self) -> str:
        return self.outcome.value if isinstance(self.outcome, AttemptOutcome) else str(self.outcome)
