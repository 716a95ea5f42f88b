"""Read-side projections of a transcript record.

``project_status`` is the lightweight view meant for polling; it reports
whether structured data exists without shipping it.  ``project_detail`` is the
full "show" view.  Neither triggers any transition.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from medscribe.models.attempt import TranscriptionAttempt
from medscribe.models.transcript import Transcript, TranscriptStatus


class TranscriptStatusView(BaseModel):
    id: str
    status: str
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    has_structured_data: bool
    can_retry: bool
    is_processing: bool


class TranscriptDetail(TranscriptStatusView):
    title: str
    description: Optional[str] = None
    image_url: str
    content_type: str
    structured_data: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class TranscriptSummary(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    processed_at: Optional[datetime] = None
    created_at: datetime


class TranscriptPage(BaseModel):
    items: List[TranscriptSummary]
    total: int
    page: int
    per_page: int
    pages: int


class TranscriptStats(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    recent: List[TranscriptSummary]


class AttemptView(BaseModel):
    chain_id: str
    attempt_number: int
    outcome: str
    error_kind: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


def image_url(transcript: Transcript) -> str:
    return f"/api/transcripts/{transcript.id}/image"


def project_status(transcript: Transcript) -> TranscriptStatusView:
    status = transcript.status_str
    return TranscriptStatusView(
        id=transcript.id,
        status=status,
        error_message=transcript.error_message,
        processed_at=transcript.processed_at,
        has_structured_data=transcript.formatted_transcript is not None,
        can_retry=status == TranscriptStatus.FAILED.value,
        is_processing=status == TranscriptStatus.PROCESSING.value,
    )


def project_detail(transcript: Transcript) -> TranscriptDetail:
    return TranscriptDetail(
        **project_status(transcript).model_dump(),
        title=transcript.title,
        description=transcript.description,
        image_url=image_url(transcript),
        content_type=transcript.content_type,
        structured_data=transcript.formatted_transcript,
        created_at=transcript.created_at,
        updated_at=transcript.updated_at,
    )


def project_summary(transcript: Transcript) -> TranscriptSummary:
    return TranscriptSummary(
        id=transcript.id,
        title=transcript.title,
        description=transcript.description,
        status=transcript.status_str,
        processed_at=transcript.processed_at,
        created_at=transcript.created_at,
    )


def project_attempt(attempt: TranscriptionAttempt) -> AttemptView:
    # error_detail is internal and deliberately left out.
    return AttemptView(
        chain_id=attempt.chain_id,
        attempt_number=attempt.attempt_number,
        outcome=attempt.outcome_str,
        error_kind=attempt.error_kind,
        started_at=attempt.started_at,
        finished_at=attempt.finished_at,
    )
