from unittest.mock import MagicMock, patch

from medscribe.errors import ConfigError, ErrorKind, NetworkError
from medscribe.models.attempt import AttemptOutcome, TranscriptionAttempt
from medscribe.models.transcript import Transcript, TranscriptStatus
from medscribe.services.retry_policy import RetryPolicy
from medscribe.workers.tasks import celery_app, transcribe_document_task

from tests.helpers import make_transcript, valid_data


def run_task(transcript):
    return transcribe_document_task.apply(
        kwargs={"transcript_id": transcript.id, "chain_id": transcript.active_chain_id}
    )


def reload(db, transcript):
    db.expire_all()
    return db.get(Transcript, transcript.id)


def test_celery_configuration():
    assert celery_app.conf.task_serializer == "json"
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_reject_on_worker_lost is True
    assert celery_app.conf.task_acks_on_failure_or_timeout is False
    assert celery_app.conf.task_routes["transcribe_document_task"]["queue"] == "transcription"
    assert transcribe_document_task.soft_time_limit == 300


@patch("medscribe.services.transcription_job.GeminiClient")
def test_task_completes_record(mock_client_cls, db):
    mock_client_cls.return_value.transcribe.return_value = valid_data()
    transcript = make_transcript(db)

    result = run_task(transcript)

    assert result.successful()
    assert result.result["status"] == "completed"
    record = reload(db, transcript)
    assert record.status == TranscriptStatus.COMPLETED
    assert record.structured_data["patient"]["name"] == "John Doe"
    assert record.processed_at is not None


@patch("medscribe.services.transcription_job.GeminiClient")
def test_three_failures_exhaust_the_chain(mock_client_cls, db):
    client = MagicMock()
    client.transcribe.side_effect = NetworkError("connection reset")
    mock_client_cls.return_value = client
    transcript = make_transcript(db)

    result = run_task(transcript)

    assert result.failed()
    assert client.transcribe.call_count == 3
    record = reload(db, transcript)
    assert record.status == TranscriptStatus.FAILED
    assert "check your internet connection" in record.error_message
    assert record.structured_data is None

    attempts = (
        db.query(TranscriptionAttempt)
        .filter_by(transcript_id=transcript.id)
        .order_by(TranscriptionAttempt.attempt_number)
        .all()
    )
    assert [a.attempt_number for a in attempts] == [1, 2, 3]
    assert {a.outcome for a in attempts} == {AttemptOutcome.FAILED}
    assert {a.chain_id for a in attempts} == {transcript.active_chain_id}


@patch("medscribe.services.transcription_job.GeminiClient")
def test_recovery_on_second_attempt(mock_client_cls, db):
    client = MagicMock()
    client.transcribe.side_effect = [NetworkError("blip"), valid_data()]
    mock_client_cls.return_value = client
    transcript = make_transcript(db)

    result = run_task(transcript)

    assert result.successful()
    assert client.transcribe.call_count == 2
    record = reload(db, transcript)
    assert record.status == TranscriptStatus.COMPLETED
    assert record.error_message is None


@patch("medscribe.workers.tasks.RetryPolicy.from_settings")
@patch("medscribe.services.transcription_job.GeminiClient")
def test_fail_fast_kind_skips_remaining_attempts(mock_client_cls, mock_policy, db):
    mock_client_cls.side_effect = ConfigError("GEMINI_API_KEY missing")
    mock_policy.return_value = RetryPolicy(max_attempts=3, fail_fast_kinds=frozenset({ErrorKind.CONFIG}))
    transcript = make_transcript(db)

    result = run_task(transcript)

    assert result.failed()
    assert mock_client_cls.call_count == 1
    record = reload(db, transcript)
    assert record.status == TranscriptStatus.FAILED
    assert "not properly configured" in record.error_message


@patch("medscribe.services.transcription_job.GeminiClient")
def test_stale_task_leaves_newer_chain_alone(mock_client_cls, db):
    transcript = make_transcript(db, chain_id="current")

    result = transcribe_document_task.apply(kwargs={"transcript_id": transcript.id, "chain_id": "old"})

    assert result.successful()
    assert result.result["status"] == "skipped"
    mock_client_cls.assert_not_called()
    assert reload(db, transcript).status == TranscriptStatus.PENDING


def add_interrupted_attempts(db, transcript, count):
    for number in range(1, count + 1):
        db.add(
            TranscriptionAttempt(
                transcript_id=transcript.id,
                chain_id=transcript.active_chain_id,
                attempt_number=number,
                outcome=AttemptOutcome.RUNNING,
            )
        )
    db.commit()


@patch("medscribe.services.transcription_job.GeminiClient")
def test_redelivered_job_closes_interrupted_attempt(mock_client_cls, db):
    mock_client_cls.return_value.transcribe.return_value = valid_data()
    transcript = make_transcript(db, status=TranscriptStatus.PROCESSING)
    add_interrupted_attempts(db, transcript, 1)

    result = run_task(transcript)

    assert result.successful()
    assert result.result["attempt"] == 2
    assert reload(db, transcript).status == TranscriptStatus.COMPLETED
    attempts = (
        db.query(TranscriptionAttempt)
        .filter_by(transcript_id=transcript.id)
        .order_by(TranscriptionAttempt.attempt_number)
        .all()
    )
    assert [(a.attempt_number, a.outcome) for a in attempts] == [
        (1, AttemptOutcome.FAILED),
        (2, AttemptOutcome.SUCCEEDED),
    ]
    assert attempts[0].error_kind == "timeout"
    assert attempts[0].finished_at is not None


@patch("medscribe.services.transcription_job.GeminiClient")
def test_redelivered_job_after_budget_spent_fails_record(mock_client_cls, db):
    transcript = make_transcript(db, status=TranscriptStatus.PROCESSING)
    add_interrupted_attempts(db, transcript, 3)

    result = run_task(transcript)

    assert result.successful()
    assert result.result["status"] == "failed"
    mock_client_cls.assert_not_called()
    record = reload(db, transcript)
    assert record.status == TranscriptStatus.FAILED
    assert "took too long" in record.error_message
    outcomes = {a.outcome for a in db.query(TranscriptionAttempt).filter_by(transcript_id=transcript.id)}
    assert outcomes == {AttemptOutcome.FAILED}
