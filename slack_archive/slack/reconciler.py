"""Resolve Slack identifiers to local primary keys."""
from threading import Lock
from typing import Dict, Optional, Tuple

from ..config import Config
from ..database.db_manager import DatabaseManager
from ..database.models import Channel, Thread, User
from ..utils.backoff import TRANSPORT_ERRORS
from ..utils.logger import get_logger
from .client import SlackClient, SlackCredential
from .normalizer import to_local_user_params
from .payloads import PayloadError, RemoteUser, parse_user

logger = get_logger(__name__)


class IdentityReconciler:
    """Find-or-create local records for remote users, threads and channels.

    Safe to call repeatedly and from several importer threads: uniqueness is
    enforced by the database, so repeated calls converge on one row.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        client: Optional[SlackClient] = None,
        fetch_missing_users: bool = Config.FETCH_MISSING_USERS,
    ):
        self.db_manager = db_manager
        self.client = client
        self.fetch_missing_users = fetch_missing_users
        self._user_ids: Dict[Tuple[str, str], str] = {}
        self._lock = Lock()

    def find_or_create_user(self, remote_user: RemoteUser, account_id: str) -> User:
        """Return the user for (account, Slack id), creating it on first sight."""
        user = self.db_manager.find_or_create_user(to_local_user_params(remote_user, account_id))
        with self._lock:
            self._user_ids[(account_id, remote_user.id)] = user.id
        return user

    def resolve_user_id(
        self,
        external_user_id: Optional[str],
        account_id: str,
        credential: Optional[SlackCredential] = None,
    ) -> Optional[str]:
        """Local id for a Slack user or bot id, or None when it cannot be resolved.

        Unknown users are looked up with users.info only when missing-user
        fetching is enabled and a client and credential are available.
        """
        if not external_user_id:
            return None

        key = (account_id, external_user_id)
        with self._lock:
            cached = self._user_ids.get(key)
        if cached:
            return cached

        user = self.db_manager.find_user(external_user_id, account_id)
        if user is None and self.fetch_missing_users and self.client and credential:
            user = self._fetch_user(external_user_id, account_id, credential)

        if user is None:
            return None

        with self._lock:
            self._user_ids[key] = user.id
        return user.id

    def _fetch_user(
        self,
        external_user_id: str,
        account_id: str,
        credential: SlackCredential,
    ) -> Optional[User]:
        # Bot ids (B...) are not valid users.info arguments
        if not external_user_id.startswith(("U", "W")):
            return None

        logger.debug(f"Fetching unknown user {external_user_id}")
        try:
            response = self.client.get_user_profile(external_user_id, credential)
            remote_user = parse_user(response.get("user") or {})
        except (PayloadError, *TRANSPORT_ERRORS) as e:
            logger.warning(f"Could not fetch user {external_user_id}: {e}")
            return None

        return self.find_or_create_user(remote_user, account_id)

    def resolve_thread_id(self, external_thread_id: Optional[str], channel_id: str) -> Optional[str]:
        """Local id of an existing thread, or None."""
        thread = self.db_manager.find_thread(external_thread_id, channel_id)
        return thread.id if thread else None

    def find_or_create_thread(
        self,
        external_thread_id: str,
        channel_id: str,
        sent_at: int,
        slug: str,
    ) -> Thread:
        """Return the thread, creating it with ``sent_at``/``slug`` on first sight."""
        return self.db_manager.find_or_create_thread(external_thread_id, channel_id, sent_at, slug)

    def find_or_create_channel(
        self,
        external_channel_id: str,
        account_id: str,
        name: Optional[str] = None,
    ) -> Channel:
        return self.db_manager.find_or_create_channel(external_channel_id, account_id, name)
