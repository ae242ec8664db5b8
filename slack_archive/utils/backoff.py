"""Exponential backoff utilities."""
import logging
from typing import Callable, Optional, Any

from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log
)
import requests
from slack_sdk.errors import SlackApiError, SlackClientError, SlackRequestError

from .logger import get_logger

logger = get_logger(__name__)

# Errors raised by the Slack client or the HTTP stack. URLError, socket
# timeouts and requests exceptions are all OSError subclasses.
TRANSPORT_ERRORS = (SlackClientError, OSError)

RETRYABLE_ERROR_CODES = ("ratelimited", "timeout", "service_unavailable", "internal_error")


def should_retry_error(error: BaseException) -> bool:
    """Check if error should be retried."""
    if isinstance(error, SlackApiError):
        response = error.response
        status_code = getattr(response, "status_code", 200)
        
        # Retry on rate limit errors
        if status_code == 429:
            return True
        
        # Retry on server errors
        if status_code >= 500:
            return True
        
        error_code = response.get("error", "") if response is not None else ""
        return error_code in RETRYABLE_ERROR_CODES
    
    if isinstance(error, requests.HTTPError):
        status_code = getattr(error.response, "status_code", 0)
        return status_code == 429 or status_code >= 500

    return isinstance(error, (ConnectionError, TimeoutError, requests.ConnectionError, requests.Timeout))


def is_transport_failure(error: BaseException) -> bool:
    """Check if error means Slack could not be reached or could not serve the call.
    
    API refusals (``missing_scope``, ``not_in_channel``, an HTTP 404) are answers
    from a working Slack and do not count.
    """
    if isinstance(error, (SlackApiError, requests.HTTPError)):
        return should_retry_error(error)
    return isinstance(error, (SlackRequestError, OSError)) or should_retry_error(error)


def get_retry_after(error: BaseException) -> Optional[float]:
    """Get Retry-After value from error."""
    if isinstance(error, SlackApiError) and error.response is not None:
        headers = getattr(error.response, "headers", None) or {}
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except (TypeError, ValueError):
                pass
    
    return None


class wait_retry_after_or_exponential:
    """Wait for the server's Retry-After when given, else back off exponentially."""
    
    def __init__(self, min_wait: float = 1, max_wait: float = 60):
        self.max_wait = max_wait
        self._exponential = wait_exponential(multiplier=1, min=min_wait, max=max_wait)
    
    def __call__(self, retry_state) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        retry_after = get_retry_after(error) if error is not None else None
        if retry_after is not None:
            logger.warning(f"Rate limited. Retry-After: {retry_after}s")
            return min(retry_after, self.max_wait)
        return self._exponential(retry_state)


def call_with_backoff(
    func: Callable[..., Any],
    *args,
    max_attempts: int = 5,
    min_wait: float = 1,
    max_wait: float = 60,
    **kwargs
) -> Any:
    """Call ``func`` retrying retryable errors; the last error is re-raised."""
    retryer = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_retry_after_or_exponential(min_wait, max_wait),
        retry=retry_if_exception(should_retry_error),
        before_sleep=before_sleep_log(logger, logging.WARN),
        reraise=True
    )
    return retryer(func, *args, **kwargs)
