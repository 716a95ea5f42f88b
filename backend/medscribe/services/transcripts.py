"""Record-mutation surface for transcripts.

These functions are what the HTTP layer calls.  Each one validates its input,
writes the record with one invariant-preserving update and then asks the
dispatcher to schedule work; none of them talks to the AI service.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from medscribe.errors import AppBaseException, RetryNotAllowed, TranscriptBusy, TranscriptNotFound
from medscribe.models.attempt import TranscriptionAttempt
from medscribe.models.transcript import Transcript, TranscriptStatus, utcnow
from medscribe.services.dispatch import dispatch_transcription, new_chain_id
from medscribe.utils.images import validate_upload
from medscribe.utils.storage import delete_image, store_image

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 1000
DEFAULT_PER_PAGE = 15
BUSY_MESSAGE = "Cannot update transcript while it is being processed."


def _clean_title(title: Optional[str]) -> str:
    value = (title or "").strip()
    if not value:
        raise AppBaseException("The title field is required.", status_code=422)
    if len(value) > TITLE_MAX_LENGTH:
        raise AppBaseException(f"The title may not be greater than {TITLE_MAX_LENGTH} characters.", status_code=422)
    return value


def _clean_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    value = description.strip()
    if len(value) > DESCRIPTION_MAX_LENGTH:
        raise AppBaseException(
            f"The description may not be greater than {DESCRIPTION_MAX_LENGTH} characters.", status_code=422
        )
    return value or None


def _live(db: Session):
    return db.query(Transcript).filter(Transcript.deleted_at.is_(None))


def get_transcript(db: Session, transcript_id: str) -> Transcript:
    transcript = _live(db).filter(Transcript.id == transcript_id).first()
    if transcript is None:
        raise TranscriptNotFound(transcript_id)
    return transcript


def create_transcript(
    db: Session,
    title: str,
    image_bytes: bytes,
    description: Optional[str] = None,
    declared_type: Optional[str] = None,
    filename: Optional[str] = None,
) -> Transcript:
    """Store the image, create a ``pending`` record and schedule its first job."""
    title = _clean_title(title)
    description = _clean_description(description)
    mime_type = validate_upload(image_bytes, declared_type, filename)

    image_key = store_image(image_bytes, mime_type)
    transcript = Transcript(
        title=title,
        description=description,
        image_key=image_key,
        content_type=mime_type,
        status=TranscriptStatus.PENDING,
        active_chain_id=new_chain_id(),
    )
    db.add(transcript)
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_image(image_key)
        raise
    db.refresh(transcript)
    logger.info("Created transcript %s (%s, %d bytes)", transcript.id, mime_type, len(image_bytes))

    dispatch_transcription(db, transcript)
    return transcript


def update_transcript(
    db: Session,
    transcript_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    image_bytes: Optional[bytes] = None,
    declared_type: Optional[str] = None,
    filename: Optional[str] = None,
) -> Transcript:
    """
    Patch metadata and optionally replace the image.

    A new image resets the record to ``pending`` under a fresh attempt chain
    and schedules a job.  Any update of a ``processing`` record is refused
    with ``TranscriptBusy``.  ``None`` arguments leave the field unchanged.
    """
    transcript = get_transcript(db, transcript_id)
    if transcript.is_processing:
        raise TranscriptBusy(BUSY_MESSAGE)

    values: dict = {}
    if title is not None:
        values["title"] = _clean_title(title)
    if description is not None:
        values["description"] = _clean_description(description)

    guard = _live(db).filter(
        Transcript.id == transcript_id,
        Transcript.status != TranscriptStatus.PROCESSING,
    )

    if image_bytes is None:
        if values:
            values["updated_at"] = utcnow()
            if not guard.update(values, synchronize_session=False):
                db.rollback()
                raise TranscriptBusy(BUSY_MESSAGE)
            db.commit()
            logger.info("Updated metadata of transcript %s", transcript_id)
        db.refresh(transcript)
        return transcript

    mime_type = validate_upload(image_bytes, declared_type, filename)
    new_key = store_image(image_bytes, mime_type)
    old_key = transcript.image_key
    values.update(Transcript.reset_values(new_chain_id()))
    values.update({"image_key": new_key, "content_type": mime_type})
    try:
        swapped = guard.update(values, synchronize_session=False)
        if not swapped:
            db.rollback()
            delete_image(new_key)
            raise TranscriptBusy(BUSY_MESSAGE)
        db.commit()
    except TranscriptBusy:
        raise
    except Exception:
        db.rollback()
        delete_image(new_key)
        raise

    # The previous blob is released only after the pointer swap is durable.
    delete_image(old_key)
    db.refresh(transcript)
    logger.info("Replaced image of transcript %s, re-processing scheduled", transcript_id)

    dispatch_transcription(db, transcript)
    return transcript


def retry_transcript(db: Session, transcript_id: str) -> Transcript:
    """Reset a ``failed`` record to ``pending`` and start a new attempt chain."""
    transcript = get_transcript(db, transcript_id)
    if not transcript.is_failed:
        raise RetryNotAllowed()

    reset = _live(db).filter(
        Transcript.id == transcript_id,
        Transcript.status == TranscriptStatus.FAILED,
    ).update(Transcript.reset_values(new_chain_id()), synchronize_session=False)
    if not reset:
        db.rollback()
        raise RetryNotAllowed()
    db.commit()
    db.refresh(transcript)
    logger.info("Retrying transcript %s (chain %s)", transcript_id, transcript.active_chain_id)

    dispatch_transcription(db, transcript)
    return transcript


def delete_transcript(db: Session, transcript_id: str) -> None:
    """Soft-delete the record and release its image."""
    transcript = get_transcript(db, transcript_id)
    image_key = transcript.image_key
    now = utcnow()
    _live(db).filter(Transcript.id == transcript_id).update(
        {"deleted_at": now, "active_chain_id": None, "updated_at": now}, synchronize_session=False
    )
    db.commit()
    delete_image(image_key)
    logger.info("Deleted transcript %s", transcript_id)


def list_transcripts(
    db: Session,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> tuple[list[Transcript], int]:
    """Newest-first page of live records and the total number of matches."""
    query = _live(db)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Transcript.title.ilike(pattern), Transcript.description.ilike(pattern)))
    if status:
        try:
            query = query.filter(Transcript.status == TranscriptStatus(status))
        except ValueError:
            raise AppBaseException(
                f"Invalid status filter. Allowed: {', '.join(TranscriptStatus.options())}", status_code=422
            ) from None

    total = query.count()
    page = max(page, 1)
    items = (
        query.order_by(Transcript.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total


def processing_count(db: Session) -> int:
    return _live(db).filter(Transcript.status == TranscriptStatus.PROCESSING).count()


def transcript_stats(db: Session, recent: int = 5) -> dict:
    """Per-status counters and the most recent records for the dashboard."""
    rows = (
        db.query(Transcript.status, func.count(Transcript.id))
        .filter(Transcript.deleted_at.is_(None))
        .group_by(Transcript.status)
        .all()
    )
    counts = {status.value: 0 for status in TranscriptStatus}
    for status, count in rows:
        key = status.value if isinstance(status, TranscriptStatus) else str(status)
        counts[key] = count
    return {
        "total": sum(counts.values()),
        **counts,
        "recent": _live(db).order_by(Transcript.created_at.desc()).limit(recent).all(),
    }


def list_attempts(db: Session, transcript_id: str) -> list[TranscriptionAttempt]:
    get_transcript(db, transcript_id)
    return (
        db.query(TranscriptionAttempt)
        .filter(TranscriptionAttempt.transcript_id == transcript_id)
        .order_by(TranscriptionAttempt.started_at.desc(), TranscriptionAttempt.id.desc())
        .all()
    )
