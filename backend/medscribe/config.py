"""Application-wide configuration loader.

Every module imports the singleton ``settings`` object defined here.  Values
come from environment variables; the API process and the Celery worker read
the same variables so they always agree on queue names, limits and the
retry budget.
"""

import os
from pathlib import Path


def _csv_ints(raw: str) -> tuple[int, ...]:
    return tuple(int(part) for part in raw.split(",") if part.strip())


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. ``DATABASE_URL=""``) ``os.getenv("DATABASE_URL", default)`` returns an
    empty string *not* ``None``.  That empty string then overrides the useful
    in-code default and downstream libraries (SQLAlchemy, Celery...) raise
    parsing errors.  To avoid that for every setting we use the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values ("", None) are replaced by the specified DEFAULT.
    """

    DATABASE_URL: str = os.getenv('DATABASE_URL') or 'postgresql://medscribe:medscribe@db:5432/medscribe'
    DB_ECHO: bool = (os.getenv('DB_ECHO') or '0').lower() in ('1', 'true', 'yes')

    CELERY_BROKER_URL: str = os.getenv('CELERY_BROKER_URL') or 'redis://broker:6379/0'
    CELERY_RESULT_BACKEND: str = os.getenv('CELERY_RESULT_BACKEND') or 'redis://broker:6379/0'
    CELERY_TASK_ALWAYS_EAGER: bool = (os.getenv('CELERY_TASK_ALWAYS_EAGER') or '0').lower() in ('1', 'true', 'yes')
    TRANSCRIPTION_QUEUE: str = os.getenv('TRANSCRIPTION_QUEUE') or 'transcription'

    GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY') or ''
    GEMINI_MODEL: str = os.getenv('GEMINI_MODEL') or 'gemini-2.5-flash'
    GEMINI_BASE_URL: str = os.getenv('GEMINI_BASE_URL') or 'https://generativelanguage.googleapis.com/v1beta'
    GEMINI_TIMEOUT: float = float(os.getenv('GEMINI_TIMEOUT') or '120')

    # Retry budget of one attempt chain and the per-attempt time bound.
    TRANSCRIPTION_TIMEOUT: int = int(os.getenv('TRANSCRIPTION_TIMEOUT') or '300')
    TRANSCRIPTION_MAX_ATTEMPTS: int = int(os.getenv('TRANSCRIPTION_MAX_ATTEMPTS') or '3')
    TRANSCRIPTION_BACKOFF: tuple[int, ...] = _csv_ints(os.getenv('TRANSCRIPTION_BACKOFF') or '30,60,120')
    TRANSCRIPTION_FAIL_FAST: tuple[str, ...] = _csv(os.getenv('TRANSCRIPTION_FAIL_FAST') or '')

    MAX_UPLOAD_SIZE_MB: int = int(os.getenv('MAX_UPLOAD_SIZE_MB') or '10')

    LOG_DIR: str = os.getenv('LOG_DIR') or str(Path('backend') / 'logs')

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


settings = Settings()
