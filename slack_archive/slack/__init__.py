"""Slack ingestion package: API client, payload validation, import pipeline."""
from .client import SlackClient, SlackCredential
from .payloads import PayloadError, MalformedTimestampError, parse_message, parse_user
from .normalizer import to_local_message_params, to_local_user_params, ts_to_epoch_ms
from .reconciler import IdentityReconciler
from .importer import ImportSummary, SlackImporter
from .coordinator import SyncCoordinator

__all__ = [
    "SlackClient",
    "SlackCredential",
    "PayloadError",
    "MalformedTimestampError",
    "parse_message",
    "parse_user",
    "to_local_message_params",
    "to_local_user_params",
    "ts_to_epoch_ms",
    "IdentityReconciler",
    "ImportSummary",
    "SlackImporter",
    "SyncCoordinator",
]
