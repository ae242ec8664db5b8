"""Slack Archive - import Slack workspaces into a local database."""

__version__ = "0.1.0"
