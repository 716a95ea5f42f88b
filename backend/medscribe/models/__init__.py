# Namespace for ORM models.
from .attempt import AttemptOutcome, TranscriptionAttempt
from .transcript import Transcript, TranscriptStatus

__all__ = ["AttemptOutcome", "TranscriptionAttempt", "Transcript", "TranscriptStatus"]
