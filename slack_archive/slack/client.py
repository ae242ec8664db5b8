"""Slack Web API client used by the importer.

One method per remote resource. Every call takes the workspace credential
explicitly; the client keeps no auth state of its own. Calls never retry:
errors (``SlackApiError`` for non-ok responses, ``OSError`` subclasses for
transport failures) propagate to the caller, which owns the retry policy.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from slack_sdk import WebClient
from slack_sdk.web import SlackResponse

from ..config import Config
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SlackCredential:
    """Bearer token scoped to one Slack workspace."""
    token: str

    def __repr__(self) -> str:
        return f"SlackCredential(token='{self.token[:5]}...')"

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


def get_next_cursor(response: Any) -> Optional[str]:
    """Return the pagination cursor of a Slack response, or None on the last page."""
    metadata = response.get("response_metadata") or {}
    return metadata.get("next_cursor") or None


class SlackClient:
    """Thin wrapper over ``slack_sdk.WebClient`` for the ingestion endpoints."""

    def __init__(
        self,
        client: Optional[WebClient] = None,
        session: Optional[requests.Session] = None,
        timeout: int = Config.SLACK_API_TIMEOUT,
        page_size: int = Config.DEFAULT_PAGE_SIZE,
    ):
        """Initialize Slack client.

        Args:
            client: Preconfigured WebClient. Built without a token by default.
            session: HTTP session used for file downloads.
            timeout: Per-request timeout in seconds.
            page_size: ``limit`` sent with paginated history requests.
        """
        self.client = client or WebClient(timeout=timeout)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size

    def fetch_conversation_history(
        self,
        channel_id: str,
        credential: SlackCredential,
        cursor: Optional[str] = None,
        oldest: Optional[str] = None,
    ) -> SlackResponse:
        """Fetch one page of channel history (newest first)."""
        logger.debug(f"conversations.history channel={channel_id} cursor={cursor}")
        return self.client.conversations_history(
            channel=channel_id,
            cursor=cursor,
            oldest=oldest,
            limit=self.page_size,
            token=credential.token,
        )

    def fetch_message(
        self,
        channel_id: str,
        credential: SlackCredential,
        message_ts: str,
    ) -> SlackResponse:
        """Fetch a single message by its ts."""
        return self.client.conversations_history(
            channel=channel_id,
            latest=message_ts,
            inclusive=True,
            limit=1,
            token=credential.token,
        )

    def fetch_thread_replies(
        self,
        thread_ts: str,
        channel_id: str,
        credential: SlackCredential,
    ) -> SlackResponse:
        """Fetch the replies of a thread, parent included.

        Only the first page is requested; callers check ``has_more``.
        """
        logger.debug(f"conversations.replies channel={channel_id} ts={thread_ts}")
        return self.client.conversations_replies(
            channel=channel_id,
            ts=thread_ts,
            token=credential.token,
        )

    def list_users(
        self,
        credential: SlackCredential,
        cursor: Optional[str] = None,
    ) -> SlackResponse:
        """Fetch one page of workspace members."""
        return self.client.users_list(
            cursor=cursor,
            limit=self.page_size,
            token=credential.token,
        )

    def get_user_profile(self, user_id: str, credential: SlackCredential) -> SlackResponse:
        """Fetch a single user (users.info)."""
        return self.client.users_info(user=user_id, token=credential.token)

    def auth_test(self, credential: SlackCredential) -> SlackResponse:
        """Check the credential and identify the bot and workspace behind it."""
        return self.client.auth_test(token=credential.token)

    def fetch_team_info(self, credential: SlackCredential) -> SlackResponse:
        """Fetch the workspace the credential belongs to."""
        return self.client.team_info(token=credential.token)

    def join_channel(self, channel_id: str, credential: SlackCredential) -> SlackResponse:
        """Join a public channel so its history can be read."""
        return self.client.conversations_join(channel=channel_id, token=credential.token)

    def list_channels(
        self,
        workspace_id: str,
        credential: SlackCredential,
        cursor: Optional[str] = None,
    ) -> SlackResponse:
        """Fetch one page of non-archived channels of a workspace."""
        return self.client.conversations_list(
            team_id=workspace_id,
            exclude_archived=True,
            limit=999,
            cursor=cursor,
            token=credential.token,
        )

    def fetch_file(
        self,
        file_url: str,
        credential: Optional[SlackCredential] = None,
    ) -> requests.Response:
        """Download a file. Private Slack URLs need the credential.

        Raises:
            requests.HTTPError: on a non-2xx response.
        """
        headers: Dict[str, str] = {}
        if credential:
            headers["Authorization"] = credential.authorization

        response = self.session.get(file_url, headers=headers, stream=True, timeout=self.timeout)
        response.raise_for_status()
        return response
