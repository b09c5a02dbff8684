"""
Retry with exponential backoff for outbound service calls
"""
import time
import random
import logging
from typing import Callable, Any, Optional, Dict, Tuple, Type, FrozenSet
from dataclasses import dataclass, field

import requests

from vip.utils.error_handler import TransientServiceError, RetryExhaustedError
from vip.monitoring.metrics import record_retry_attempt

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    TransientServiceError,
)


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration"""
    max_attempts: int = 10
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    retry_statuses: FrozenSet[int] = field(default=RETRYABLE_STATUS_CODES)

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "RetryConfig":
        """Build from a config section such as api.ossindex.retry"""
        values = values or {}
        defaults = cls()
        return cls(
            max_attempts=int(values.get('max_attempts', defaults.max_attempts)),
            initial_delay=float(values.get('initial_delay', defaults.initial_delay)),
            multiplier=float(values.get('multiplier', defaults.multiplier)),
            max_delay=float(values.get('max_delay', defaults.max_delay)),
            jitter=bool(values.get('jitter', defaults.jitter)),
        )


class BackoffExecutor:
    """
    Runs a single outbound call, retrying transient failures.

    A call is retried when it raises one of the transient exception types or
    returns a response whose status code is in ``retry_statuses``. The
    previous response is closed before the next attempt.
    """

    def __init__(self, config: RetryConfig, name: str = "default",
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.name = name
        self._sleep = sleep
        self.logger = logging.getLogger(f"{__name__}.{name}")

    def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with retry logic

        Returns:
            The first non-retryable result of ``func``

        Raises:
            RetryExhaustedError: when every attempt failed transiently
        """
        last_exception: Optional[BaseException] = None
        last_status: Optional[int] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                result = func(*args, **kwargs)
            except TRANSIENT_EXCEPTIONS as e:
                last_exception = e
                last_status = getattr(e, 'status_code', None)
                reason = str(e)
            else:
                status = getattr(result, 'status_code', None)
                if status not in self.config.retry_statuses:
                    return result
                last_exception = None
                last_status = status
                reason = f"HTTP {status}"
                _close(result)

            if attempt == self.config.max_attempts:
                self.logger.error(f"All {self.config.max_attempts} attempts of {self.name} failed: {reason}")
                break

            record_retry_attempt(self.name)
            delay = self.calculate_delay(attempt)
            self.logger.warning(f"Attempt {attempt} of {self.name} failed: {reason}. Retrying in {delay:.2f}s...")
            self._sleep(delay)

        raise RetryExhaustedError(
            f"{self.name} failed after {self.config.max_attempts} attempts",
            attempts=self.config.max_attempts,
            status_code=last_status,
            last_error=last_exception,
        ) from last_exception

    def calculate_delay(self, attempt: int) -> float:
        """Exponential delay for the given 1-based attempt, capped at max_delay"""
        delay = self.config.initial_delay * (self.config.multiplier ** (attempt - 1))

        if self.config.jitter:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return min(delay, self.config.max_delay)


def _close(result: Any) -> None:
    close = getattr(result, 'close', None)
    if callable(close):
        close()
