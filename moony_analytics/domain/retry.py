"""Retry state and error classification for the statistics pipeline"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from moony_analytics.domain.exceptions import PermanentError, ProviderAPIError

# Lower-cased substrings that mark an error as permanent regardless of its type
PERMANENT_ERROR_MESSAGES = (
    "user not found",
    "no access credential",
    "invalid access credential",
)

PERMANENT_ERROR_CODES = {"INVALID_ACCESS_TOKEN"}

DEFAULT_RETRY_DELAYS = (1.0, 2.0, 4.0)


class ErrorClass(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify_error(error: BaseException) -> ErrorClass:
    """Decide whether retrying could succeed"""
    if isinstance(error, PermanentError):
        return ErrorClass.PERMANENT
    if isinstance(error, ProviderAPIError):
        if error.permanent or error.error_code in PERMANENT_ERROR_CODES:
            return ErrorClass.PERMANENT
        return ErrorClass.TRANSIENT
    if isinstance(error, (asyncio.TimeoutError, httpx.TransportError)):
        return ErrorClass.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in PERMANENT_ERROR_MESSAGES):
        return ErrorClass.PERMANENT
    return ErrorClass.TRANSIENT


@dataclass
class RetryState:
    """Attempt bookkeeping for one pipeline run, including its retries"""

    max_attempts: int
    attempt: int = 0
    last_error_class: Optional[ErrorClass] = None

    @property
    def attempts_made(self) -> int:
        return self.attempt + 1

    def can_retry(self) -> bool:
        return self.last_error_class == ErrorClass.TRANSIENT and self.attempts_made < self.max_attempts

    def next_delay(self, schedule: Sequence[float] = DEFAULT_RETRY_DELAYS) -> float:
        """Delay before the next attempt; the last entry repeats once the schedule runs out"""
        if not schedule:
            return 0.0
        return schedule[min(self.attempt, len(schedule) - 1)]

    def advance(self) -> None:
        self.attempt += 1
        self.last_error_class = None
