"""Retry budget of one attempt chain.

The budget is plain data (attempt count, backoff schedule, per-attempt time
bound) read from settings, so the worker asks this object instead of relying
on Celery's default ``max_retries``/``countdown``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from medscribe.config import settings
from medscribe.errors import ErrorKind, error_kind


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: tuple[int, ...] = (30, 60, 120)
    timeout: int = 300
    fail_fast_kinds: frozenset[ErrorKind] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        kinds = set()
        for name in settings.TRANSCRIPTION_FAIL_FAST:
            try:
                kinds.add(ErrorKind(name))
            except ValueError:
                continue
        return cls(
            max_attempts=max(1, settings.TRANSCRIPTION_MAX_ATTEMPTS),
            backoff=settings.TRANSCRIPTION_BACKOFF or (30,),
            timeout=settings.TRANSCRIPTION_TIMEOUT,
            fail_fast_kinds=frozenset(kinds),
        )

    def delay_for(self, attempt: int) -> int:
        """Seconds to wait before the attempt following *attempt* (1-based).

        The last entry of the schedule is reused once the schedule runs out.
        """
        if not self.backoff:
            return 0
        index = min(max(attempt, 1), len(self.backoff)) - 1
        return self.backoff[index]

    def has_attempts_left(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """Whether a failure of *attempt* should be followed by another one."""
        if error_kind(exc) in self.fail_fast_kinds:
            return False
        return self.has_attempts_left(attempt)
