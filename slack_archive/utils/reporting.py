"""Failure sinks for out-of-band ingestion errors.

Ingestion runs outside any interactive request, so per-record failures are
handed to a sink instead of being raised. The sink is injected into the
importer; tests substitute one that records what it receives.
"""
from typing import List, Protocol

from .logger import FAILURES_LOGGER, get_logger

logger = get_logger(__name__)


class FailureReporter(Protocol):
    """Fire-and-forget destination for ingestion failures."""

    def report(self, error: BaseException) -> None:
        ...


class LoggingFailureReporter:
    """Report failures to the application log with their traceback."""

    def __init__(self, name: str = FAILURES_LOGGER):
        self.logger = get_logger(name)

    def report(self, error: BaseException) -> None:
        self.logger.error(
            f"{type(error).__name__}: {error}",
            exc_info=(type(error), error, error.__traceback__),
        )


class CollectingFailureReporter:
    """Keep reported failures in memory, e.g. for a summary at the end of a CLI run."""

    def __init__(self):
        self.errors: List[BaseException] = []

    def report(self, error: BaseException) -> None:
        self.errors.append(error)


def report_failure(reporter: FailureReporter, error: BaseException) -> None:
    """Hand ``error`` to ``reporter``; a failing sink is logged, never raised."""
    try:
        reporter.report(error)
    except Exception as sink_error:
        logger.error(f"Failure reporter raised {sink_error!r} while reporting {error!r}")
