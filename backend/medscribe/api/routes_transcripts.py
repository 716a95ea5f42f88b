"""Transcript REST endpoints.

1. `GET    /transcripts`                   – paginated listing with search / status filter.
2. `POST   /transcripts`                   – upload an image and start transcription.
3. `GET    /transcripts/stats`             – dashboard counters.
4. `GET    /transcripts/processing-count`  – number of records being processed.
5. `GET    /transcripts/{id}`              – full record.
6. `GET    /transcripts/{id}/status`       – lightweight polling view.
7. `GET    /transcripts/{id}/image`        – stored source image.
8. `GET    /transcripts/{id}/attempts`     – attempt history.
9. `PATCH  /transcripts/{id}`              – metadata edit and/or image replacement.
10. `POST  /transcripts/{id}/retry`        – retry a failed record.
11. `DELETE /transcripts/{id}`             – soft delete.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status
from fastapi.responses import FileResponse

from ..config import settings
from ..db.database import SessionLocal
from ..errors import InvalidImage, TranscriptNotFound
from ..services import transcripts as transcript_service
from ..services.status import (
    AttemptView,
    TranscriptDetail,
    TranscriptPage,
    TranscriptStats,
    TranscriptStatusView,
    project_attempt,
    project_detail,
    project_status,
    project_summary,
)
from ..utils.storage import image_path

router = APIRouter()
logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 64 * 1024


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file in chunks, refusing anything over the size limit."""
    max_bytes = settings.max_upload_size_bytes
    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        received += len(chunk)
        if received > max_bytes:
            logger.warning(
                "Image upload exceeded max size. file=%s limit=%dMB", file.filename, settings.MAX_UPLOAD_SIZE_MB
            )
            raise InvalidImage(
                f"The image size cannot exceed {settings.MAX_UPLOAD_SIZE_MB}MB.",
                status_code=413,
            )
        chunks.append(chunk)
    return b"".join(chunks)


def _has_file(file: Optional[UploadFile]) -> bool:
    return file is not None and bool(file.filename)


@router.get("", response_model=TranscriptPage)
async def list_transcripts(
    search: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(transcript_service.DEFAULT_PER_PAGE, ge=1, le=100),
) -> TranscriptPage:
    """Return live transcripts, newest first."""
    db = SessionLocal()
    try:
        items, total = transcript_service.list_transcripts(
            db, search=search, status=status_filter, page=page, per_page=per_page
        )
        return TranscriptPage(
            items=[project_summary(t) for t in items],
            total=total,
            page=page,
            per_page=per_page,
            pages=math.ceil(total / per_page) if total else 0,
        )
    finally:
        db.close()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transcript(
    title: str = Form(...),
    description: Optional[str] = Form(None),
    image: UploadFile = File(...),
) -> dict:
    """Upload a handwritten document; transcription starts in the background."""
    logger.info("create_transcript called. title=%r file=%s", title, image.filename)
    data = await read_upload(image)
    db = SessionLocal()
    try:
        transcript = transcript_service.create_transcript(
            db,
            title=title,
            description=description,
            image_bytes=data,
            declared_type=image.content_type,
            filename=image.filename,
        )
        return {
            "id": transcript.id,
            "status": transcript.status_str,
            "title": transcript.title,
            "message": "Transcript created successfully. Transcription will begin shortly.",
        }
    finally:
        db.close()


@router.get("/stats", response_model=TranscriptStats)
async def transcript_stats() -> TranscriptStats:
    db = SessionLocal()
    try:
        stats = transcript_service.transcript_stats(db)
        stats["recent"] = [project_summary(t) for t in stats["recent"]]
        return TranscriptStats(**stats)
    finally:
        db.close()


@router.get("/processing-count")
async def processing_count() -> dict:
    db = SessionLocal()
    try:
        return {"count": transcript_service.processing_count(db)}
    finally:
        db.close()


@router.get("/{transcript_id}", response_model=TranscriptDetail)
async def get_transcript(transcript_id: str) -> TranscriptDetail:
    db = SessionLocal()
    try:
        return project_detail(transcript_service.get_transcript(db, transcript_id))
    finally:
        db.close()


@router.get("/{transcript_id}/status", response_model=TranscriptStatusView)
async def get_transcript_status(transcript_id: str) -> TranscriptStatusView:
    """Polling endpoint; never changes the record."""
    db = SessionLocal()
    try:
        return project_status(transcript_service.get_transcript(db, transcript_id))
    finally:
        db.close()


@router.get("/{transcript_id}/image")
async def get_transcript_image(transcript_id: str) -> FileResponse:
    db = SessionLocal()
    try:
        transcript = transcript_service.get_transcript(db, transcript_id)
    finally:
        db.close()

    path = image_path(transcript.image_key)
    if not path.is_file():
        logger.error("Image %s of transcript %s is missing", transcript.image_key, transcript_id)
        raise TranscriptNotFound(transcript_id)
    return FileResponse(path, media_type=transcript.content_type)


@router.get("/{transcript_id}/attempts", response_model=List[AttemptView])
async def get_transcript_attempts(transcript_id: str) -> List[AttemptView]:
    db = SessionLocal()
    try:
        return [project_attempt(a) for a in transcript_service.list_attempts(db, transcript_id)]
    finally:
        db.close()


@router.patch("/{transcript_id}", response_model=TranscriptDetail)
async def update_transcript(
    transcript_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
) -> TranscriptDetail:
    """Edit metadata; a new image restarts transcription."""
    data = await read_upload(image) if _has_file(image) else None
    db = SessionLocal()
    try:
        transcript = transcript_service.update_transcript(
            db,
            transcript_id,
            title=title,
            description=description,
            image_bytes=data,
            declared_type=image.content_type if data is not None else None,
            filename=image.filename if data is not None else None,
        )
        return project_detail(transcript)
    finally:
        db.close()


@router.post("/{transcript_id}/retry", response_model=TranscriptStatusView)
async def retry_transcript(transcript_id: str) -> TranscriptStatusView:
    db = SessionLocal()
    try:
        return project_status(transcript_service.retry_transcript(db, transcript_id))
    finally:
        db.close()


@router.delete("/{transcript_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transcript(transcript_id: str) -> Response:
    db = SessionLocal()
    try:
        transcript_service.delete_transcript(db, transcript_id)
    finally:
        db.close()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
