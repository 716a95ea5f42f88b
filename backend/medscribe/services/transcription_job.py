"""One execution attempt of the transcription pipeline for one record.

``TranscriptionJob.run`` claims the record (``processing``), reads the image
from the blob store, calls the AI client and writes the outcome.  It never
decides terminal failure on its own: errors are re-raised so the worker can
consult the ``RetryPolicy``; once the chain is exhausted the worker calls
``TranscriptionJob.fail``.

All record writes are guarded ``UPDATE`` statements scoped to the attempt
chain that scheduled the job.  When a record has been deleted, or reset and
handed to a newer chain, the guard matches no rows and the stale job leaves
the record alone.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from celery.exceptions import SoftTimeLimitExceeded

from medscribe.db.database import SessionLocal
from medscribe.errors import FileError, TranscriptionTimeout, error_kind, user_message
from medscribe.logging_config import TRANSCRIPTION_LOGGER
from medscribe.models.attempt import AttemptOutcome, TranscriptionAttempt
from medscribe.models.transcript import Transcript, TranscriptStatus, utcnow
from medscribe.schemas.transcription import count_data_fields, validate_structured_data
from medscribe.services.gemini import GeminiClient
from medscribe.utils import storage

logger = logging.getLogger(TRANSCRIPTION_LOGGER)

# Internal diagnostics only; keeps attempt rows small.
MAX_ERROR_DETAIL = 1000


class TranscriptionJob:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Any]] = None,
        client_factory: Optional[Callable[[], GeminiClient]] = None,
        read_blob: Optional[Callable[[str], bytes]] = None,
    ) -> None:
        self.session_factory = session_factory or SessionLocal
        self.client_factory = client_factory or GeminiClient
        self.read_blob = read_blob or storage.read_image

    @staticmethod
    def _chain_guard(query, transcript_id: str, chain_id: str):
        return query.filter(
            Transcript.id == transcript_id,
            Transcript.active_chain_id == chain_id,
            Transcript.deleted_at.is_(None),
        )

    def run(self, transcript_id: str, chain_id: str, attempt: int = 1) -> dict[str, Any]:
        """
        Execute one attempt.

        Returns a small summary dict; ``status`` is ``completed``, ``superseded``
        (the record changed hands while the AI call was running) or ``skipped``
        (the job is stale and did nothing).  Any transcription failure is
        raised as a ``TranscriptionError`` subclass.
        """
        started = time.monotonic()
        db = self.session_factory()
        try:
            claimed = (
                self._chain_guard(db.query(Transcript), transcript_id, chain_id)
                .filter(Transcript.status.in_([TranscriptStatus.PENDING, TranscriptStatus.PROCESSING]))
                .update(Transcript.processing_values(), synchronize_session=False)
            )
            if not claimed:
                db.rollback()
                logger.warning(
                    "Skipping stale transcription job transcript_id=%s chain_id=%s attempt=%s",
                    transcript_id, chain_id, attempt,
                )
                return {"transcript_id": transcript_id, "chain_id": chain_id, "attempt": attempt, "status": "skipped"}

            record = db.query(Transcript).filter(Transcript.id == transcript_id).one()
            attempt_row = TranscriptionAttempt(
                transcript_id=transcript_id,
                chain_id=chain_id,
                attempt_number=attempt,
                outcome=AttemptOutcome.RUNNING,
            )
            db.add(attempt_row)
            db.commit()
            attempt_id = attempt_row.id
            image_key, content_type = record.image_key, record.content_type

            logger.info(
                "Starting transcription job transcript_id=%s chain_id=%s attempt=%s",
                transcript_id, chain_id, attempt,
            )

            try:
                try:
                    image_bytes = self.read_blob(image_key)
                except (OSError, ValueError) as exc:
                    raise FileError(f"Image {image_key} could not be read: {exc}") from exc

                client = self.client_factory()
                data = client.transcribe(image_bytes, content_type, transcript_id=transcript_id)
                # Gate the completed transition on the schema regardless of the client.
                data = validate_structured_data(data)
            except SoftTimeLimitExceeded as exc:
                timeout_error = TranscriptionTimeout("Transcription attempt exceeded its time limit")
                self._finish_attempt(db, attempt_id, AttemptOutcome.FAILED, timeout_error)
                raise timeout_error from exc
            except Exception as exc:
                self._finish_attempt(db, attempt_id, AttemptOutcome.FAILED, exc)
                logger.warning(
                    "Transcription attempt failed transcript_id=%s attempt=%s kind=%s: %s",
                    transcript_id, attempt, error_kind(exc).value, exc,
                )
                raise

            completed = (
                self._chain_guard(db.query(Transcript), transcript_id, chain_id)
                .filter(Transcript.status == TranscriptStatus.PROCESSING)
                .update(Transcript.completion_values(data), synchronize_session=False)
            )
            db.commit()
            self._finish_attempt(db, attempt_id, AttemptOutcome.SUCCEEDED)

            elapsed = time.monotonic() - started
            if not completed:
                logger.warning(
                    "Transcription result discarded, record changed during processing transcript_id=%s chain_id=%s",
                    transcript_id, chain_id,
                )
                return {"transcript_id": transcript_id, "chain_id": chain_id, "attempt": attempt, "status": "superseded"}

            logger.info(
                "Transcription completed successfully transcript_id=%s attempt=%s processing_time=%.2fs data_fields_count=%s",
                transcript_id, attempt, elapsed, count_data_fields(data),
            )
            return {"transcript_id": transcript_id, "chain_id": chain_id, "attempt": attempt, "status": "completed"}
        finally:
            db.close()

    def recover_interrupted(self, transcript_id: str, chain_id: str) -> int:
        """
        Close attempts of the chain that never finished and count its attempts.

        A chain runs one job at a time, so a ``running`` attempt seen before a
        new execution starts belongs to a worker that was killed or hit the
        hard time limit.  Returns the number of attempts the chain has used.
        """
        db = self.session_factory()
        try:
            interrupted = (
                db.query(TranscriptionAttempt)
                .filter(
                    TranscriptionAttempt.transcript_id == transcript_id,
                    TranscriptionAttempt.chain_id == chain_id,
                    TranscriptionAttempt.outcome == AttemptOutcome.RUNNING,
                )
                .update(
                    {
                        "outcome": AttemptOutcome.FAILED,
                        "finished_at": utcnow(),
                        "error_kind": TranscriptionTimeout.kind.value,
                        "error_detail": "Attempt interrupted: worker lost or hard time limit reached",
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            used = (
                db.query(TranscriptionAttempt)
                .filter(
                    TranscriptionAttempt.transcript_id == transcript_id,
                    TranscriptionAttempt.chain_id == chain_id,
                )
                .count()
            )
        finally:
            db.close()

        if interrupted:
            logger.warning(
                "Recovered %s interrupted attempt(s) transcript_id=%s chain_id=%s",
                interrupted, transcript_id, chain_id,
            )
        return used

    def fail(self, transcript_id: str, chain_id: str, exc: BaseException) -> bool:
        """
        Terminal failure handler of an attempt chain.

        Writes ``failed`` together with a user-safe message.  Returns ``False``
        when the chain no longer owns the record.
        """
        message = user_message(exc)
        db = self.session_factory()
        try:
            updated = (
                self._chain_guard(db.query(Transcript), transcript_id, chain_id)
                .filter(Transcript.status.in_([TranscriptStatus.PENDING, TranscriptStatus.PROCESSING]))
                .update(Transcript.failure_values(message), synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if updated:
            logger.error(
                "Transcription job failed permanently transcript_id=%s chain_id=%s kind=%s error=%s",
                transcript_id, chain_id, error_kind(exc).value, exc,
            )
        else:
            logger.warning(
                "Failure of stale chain ignored transcript_id=%s chain_id=%s", transcript_id, chain_id
            )
        return bool(updated)

    @staticmethod
    def _finish_attempt(db, attempt_id: int, outcome: AttemptOutcome, exc: Optional[BaseException] = None) -> None:
        db.rollback()
        values: dict[str, Any] = {"outcome": outcome, "finished_at": utcnow()}
        if exc is not None:
            values["error_kind"] = error_kind(exc).value
            values["error_detail"] = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_DETAIL]
        db.query(TranscriptionAttempt).filter(TranscriptionAttempt.id == attempt_id).update(
            values, synchronize_session=False
        )
        db.commit()
