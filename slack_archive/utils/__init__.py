"""Utilities package for Slack Archive.

Contains core utilities for logging, rate limiting, retry logic, failure
reporting and slug generation.
"""
from .logger import get_logger, setup_logging
from .rate_limiter import RateLimiter
from .backoff import TRANSPORT_ERRORS, call_with_backoff, is_transport_failure
from .circuit_breaker import CircuitBreaker, CircuitOpenError
from .reporting import FailureReporter, LoggingFailureReporter, report_failure
from .slugs import slugify, generate_alias

__all__ = [
    "get_logger",
    "setup_logging",
    "RateLimiter",
    "TRANSPORT_ERRORS",
    "call_with_backoff",
    "is_transport_failure",
    "CircuitBreaker",
    "CircuitOpenError",
    "FailureReporter",
    "LoggingFailureReporter",
    "report_failure",
    "slugify",
    "generate_alias",
]
