"""Circuit breaker for consecutive transport failures."""
from threading import Lock
from typing import Any, Callable

from .backoff import is_transport_failure
from .logger import get_logger

logger = get_logger(__name__)


class CircuitOpenError(RuntimeError):
    """Raised when too many consecutive remote calls have failed."""


class CircuitBreaker:
    """Opens after ``threshold`` consecutive transport failures.
    
    Once open, every call raises ``CircuitOpenError`` without invoking the
    wrapped function. Any successful call resets the failure count. Errors
    that ``is_failure`` rejects (API refusals, local bugs) propagate without
    touching the count.
    """
    
    def __init__(
        self,
        threshold: int = 5,
        is_failure: Callable[[BaseException], bool] = is_transport_failure,
    ):
        self.threshold = threshold
        self.is_failure = is_failure
        self._failures = 0
        self._lock = Lock()
    
    @property
    def consecutive_failures(self) -> int:
        return self._failures
    
    @property
    def is_open(self) -> bool:
        return self._failures >= self.threshold
    
    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        if self.is_open:
            raise CircuitOpenError(
                f"Circuit open after {self._failures} consecutive transport failures"
            )
        
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                with self._lock:
                    self._failures += 1
                    if self._failures == self.threshold:
                        logger.error(
                            f"Circuit opened after {self._failures} consecutive transport failures"
                        )
            raise
        
        with self._lock:
            self._failures = 0
        return result
    
    def reset(self):
        with self._lock:
            self._failures = 0
