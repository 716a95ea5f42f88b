"""Celery application and the transcription task."""

import logging

from celery import Celery, Task
from celery.signals import worker_init

from medscribe.config import settings
from medscribe.db.database import create_tables
from medscribe.errors import TranscriptionTimeout, error_kind
from medscribe.logging_config import TRANSCRIPTION_LOGGER
from medscribe.logging_config import setup_logging as setup_app_logging
from medscribe.services.retry_policy import RetryPolicy
from medscribe.services.transcription_job import TranscriptionJob

logger = logging.getLogger(__name__)
channel = logging.getLogger(f"{TRANSCRIPTION_LOGGER}.worker")


# --- Celery Application Setup ---
celery_app = Celery(
    "medscribe",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["medscribe.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A job is acknowledged only once it finished, and a worker holds one
    # long-running transcription at a time.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # A job whose worker died or hit the hard time limit goes back on the
    # queue; the redelivered job closes the interrupted attempt.
    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=False,
    task_routes={"transcribe_document_task": {"queue": settings.TRANSCRIPTION_QUEUE}},
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)


@worker_init.connect
def _on_worker_init(**_kwargs):
    # The worker must not depend on the API container having created the schema.
    setup_app_logging()
    create_tables()
    logger.info("Celery worker initialised, queue=%s", settings.TRANSCRIPTION_QUEUE)


def _task_ids(args, kwargs):
    transcript_id = kwargs.get("transcript_id") or (args[0] if len(args) > 0 else None)
    chain_id = kwargs.get("chain_id") or (args[1] if len(args) > 1 else None)
    return transcript_id, chain_id


# --- Base Task with terminal failure handling ---
class TranscriptionTask(Task):
    """Base task that turns an exhausted attempt chain into a ``failed`` record."""
    abstract = True

    def __call__(self, *args, **kwargs):
        logger.info(f"Task {self.name} [{self.request.id}] called with args: {args}, kwargs: {kwargs}")
        return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name} [{task_id}] failed: {exc}", exc_info=einfo)
        transcript_id, chain_id = _task_ids(args, kwargs)
        if transcript_id and chain_id:
            try:
                TranscriptionJob().fail(transcript_id, chain_id, exc)
            except Exception as db_exc:
                logger.error(
                    f"DB error during failure handling for transcript {transcript_id}, task {self.name} [{task_id}]: {db_exc}",
                    exc_info=True,
                )
        else:
            logger.warning(f"Task {self.name} [{task_id}] failed without transcript/chain ids; nothing to update.")
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.info(f"Task {self.name} [{task_id}] scheduled for retry: {exc}")
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} [{task_id}] completed successfully. Result: {retval}")
        super().on_success(retval, task_id, args, kwargs)


# --- Transcription Task ---
@celery_app.task(
    name="transcribe_document_task",
    base=TranscriptionTask,
    bind=True,
    soft_time_limit=settings.TRANSCRIPTION_TIMEOUT,
    time_limit=settings.TRANSCRIPTION_TIMEOUT + 30,
)
def transcribe_document_task(self, transcript_id: str, chain_id: str) -> dict:
    """Run one attempt; on failure either retry with backoff or let it fail."""
    policy = RetryPolicy.from_settings()
    job = TranscriptionJob()
    # Redelivered messages keep their retry count, so the attempt rows decide.
    attempt = max(self.request.retries, job.recover_interrupted(transcript_id, chain_id)) + 1
    if attempt > policy.max_attempts:
        channel.error(
            "Transcription attempts exhausted by interrupted runs transcript_id=%s chain_id=%s",
            transcript_id, chain_id,
        )
        job.fail(transcript_id, chain_id, TranscriptionTimeout("Transcription attempts were interrupted"))
        return {"transcript_id": transcript_id, "chain_id": chain_id, "attempt": attempt, "status": "failed"}
    try:
        return job.run(transcript_id, chain_id, attempt=attempt)
    except Exception as exc:
        if policy.should_retry(exc, attempt):
            delay = policy.delay_for(attempt)
            channel.warning(
                "Retrying transcription transcript_id=%s attempt=%s/%s delay=%ss kind=%s",
                transcript_id, attempt, policy.max_attempts, delay, error_kind(exc).value,
            )
            raise self.retry(exc=exc, countdown=delay, max_retries=policy.max_attempts - 1)
        channel.error(
            "Transcription attempts exhausted transcript_id=%s attempt=%s/%s kind=%s",
            transcript_id, attempt, policy.max_attempts, error_kind(exc).value,
        )
        raise
