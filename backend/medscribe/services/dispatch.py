"""Scheduling of transcription jobs.

Request handlers never call the AI client themselves; they hand a
``TranscriptionJobSpec`` to ``schedule`` which places it on the Celery
transcription queue.  ``dispatch_transcription`` is the only entry point used
by the record service and applies the scheduling guard: a job is scheduled
only for a live record in ``pending`` that owns an attempt chain.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from medscribe.config import settings
from medscribe.errors import GENERIC_MESSAGE
from medscribe.models.transcript import Transcript, TranscriptStatus
from medscribe.workers.tasks import transcribe_document_task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptionJobSpec:
    transcript_id: str
    chain_id: str


def new_chain_id() -> str:
    return str(uuid.uuid4())


def schedule(spec: TranscriptionJobSpec) -> None:
    """Enqueue *spec* on the transcription queue."""
    transcribe_document_task.apply_async(
        kwargs={"transcript_id": spec.transcript_id, "chain_id": spec.chain_id},
        queue=settings.TRANSCRIPTION_QUEUE,
    )


def dispatch_transcription(db: Session, transcript: Transcript) -> Optional[TranscriptionJobSpec]:
    """
    Schedule one job for *transcript* if it is eligible.

    Records in any state other than ``pending`` are left alone and ``None`` is
    returned; this is not an error.  If the queue cannot be reached the record
    is moved to ``failed`` with the generic message so that it can be retried
    later.  The record must already be committed.
    """
    if transcript.deleted_at is not None or transcript.status != TranscriptStatus.PENDING or not transcript.active_chain_id:
        logger.info(
            "Not scheduling transcription for %s (status=%s)", transcript.id, transcript.status_str
        )
        return None

    spec = TranscriptionJobSpec(transcript_id=transcript.id, chain_id=transcript.active_chain_id)
    try:
        schedule(spec)
    except Exception as exc:
        logger.error("Failed to enqueue transcription for %s: %s", transcript.id, exc, exc_info=True)
        db.rollback()
        db.query(Transcript).filter(
            Transcript.id == spec.transcript_id,
            Transcript.active_chain_id == spec.chain_id,
            Transcript.status == TranscriptStatus.PENDING,
        ).update(Transcript.failure_values(GENERIC_MESSAGE), synchronize_session=False)
        db.commit()
        db.refresh(transcript)
        return None

    logger.info("Scheduled transcription job for %s (chain %s)", spec.transcript_id, spec.chain_id)
    # In eager mode the job has already run in another session.
    db.refresh(transcript)
    return spec
