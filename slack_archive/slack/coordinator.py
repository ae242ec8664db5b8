"""Workspace sync coordinator."""
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

from slack_sdk.errors import SlackApiError

from ..config import Config
from ..database.db_manager import DatabaseManager
from ..database.models import Account, Channel, User
from ..utils.circuit_breaker import CircuitOpenError
from ..utils.logger import get_logger
from ..utils.reporting import FailureReporter, LoggingFailureReporter, report_failure
from .client import SlackClient, SlackCredential
from .importer import ImportSummary, SlackImporter
from .payloads import parse_user

logger = get_logger(__name__)


def safe_filename(name: str) -> str:
    """Keep only characters that are safe in a file name."""
    return "".join(c for c in name if c.isalnum() or c in "._- ").strip()


class SyncCoordinator:
    """Coordinates a full sync of a Slack workspace: account, users, channels, messages, files."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        client: Optional[SlackClient] = None,
        reporter: Optional[FailureReporter] = None,
        importer: Optional[SlackImporter] = None,
        files_dir: Optional[Path] = None,
    ):
        """Initialize sync coordinator."""
        self.db_manager = db_manager or DatabaseManager()
        self.client = client or SlackClient()
        self.reporter = reporter or LoggingFailureReporter()
        self.importer = importer or SlackImporter(self.db_manager, self.client, self.reporter)
        self.files_dir = Path(files_dir or Config.FILES_DIR)

    def sync_account(self, credential: SlackCredential) -> Account:
        """Fetch the workspace the credential belongs to and store it as an account."""
        response = self.importer.call_api("team.info", self.client.fetch_team_info, credential)
        team = response.get("team") or {}
        if not team.get("id"):
            raise ValueError("team.info returned no team id")

        account = self.db_manager.save_account(team)
        logger.info(f"Workspace: {account.name} ({account.external_account_id})")
        return account

    def sync_users(self, credential: SlackCredential, account_id: str) -> int:
        """Import every member of the workspace; returns the number of new users."""
        logger.info("=" * 60)
        logger.info("SYNCING USERS")
        logger.info("=" * 60)

        members = list(self.importer.paginate("users.list", self.client.list_users, "members", credential))
        logger.info(f"Fetched {len(members)} members")
        return self.importer.import_users(members, account_id)

    def fetch_and_save_user(
        self,
        external_user_id: str,
        credential: SlackCredential,
        account_id: str,
    ) -> User:
        """Fetch one user with users.info and store it if it is new."""
        response = self.importer.call_api(
            "users.info", self.client.get_user_profile, external_user_id, credential
        )
        remote_user = parse_user(response.get("user") or {})
        return self.importer.reconciler.find_or_create_user(remote_user, account_id)

    def sync_channels(
        self,
        credential: SlackCredential,
        account: Account,
        join: bool = True,
    ) -> List[Channel]:
        """Store every non-archived channel, joining public ones the bot is not in."""
        logger.info("=" * 60)
        logger.info("SYNCING CHANNELS")
        logger.info("=" * 60)

        channels = []
        for raw_channel in self.importer.paginate(
            "conversations.list",
            self.client.list_channels,
            "channels",
            account.external_account_id,
            credential,
        ):
            channel = self.importer.reconciler.find_or_create_channel(
                raw_channel["id"], account.id, raw_channel.get("name")
            )
            channels.append(channel)

            if join and not raw_channel.get("is_member") and not raw_channel.get("is_private"):
                self.join_channel(channel, credential)

        logger.info(f"✓ Synced {len(channels)} channels")
        return channels

    def join_channel(self, channel: Channel, credential: SlackCredential) -> bool:
        """Join a public channel so its history can be read."""
        logger.info(f"Attempting to join channel: {channel.external_channel_id}")

        try:
            response = self.importer.call_api(
                "conversations.join", self.client.join_channel, channel.external_channel_id, credential
            )
        except SlackApiError as e:
            logger.warning(f"Could not join channel {channel.external_channel_id}: {e}")
            return False

        joined = bool(response.get("ok"))
        if joined:
            logger.info(f"Successfully joined channel {channel.external_channel_id}")
        return joined

    def sync_channel(
        self,
        external_channel_id: str,
        credential: SlackCredential,
        incremental: bool = False,
        account: Optional[Account] = None,
    ) -> ImportSummary:
        """Import the history of a single channel."""
        account = account or self.sync_account(credential)
        channel = self.importer.reconciler.find_or_create_channel(external_channel_id, account.id)
        return self.importer.import_channel_history(channel, credential, incremental=incremental)

    def import_message(
        self,
        external_channel_id: str,
        message_ts: str,
        credential: SlackCredential,
        thread_ts: Optional[str] = None,
    ) -> ImportSummary:
        """Import one new or edited message into its channel."""
        account = self.sync_account(credential)
        channel = self.importer.reconciler.find_or_create_channel(external_channel_id, account.id)
        return self.importer.import_message(channel, message_ts, credential, thread_ts=thread_ts)

    def sync_workspace(
        self,
        credential: SlackCredential,
        incremental: bool = False,
        join: bool = True,
    ) -> Dict[str, Any]:
        """Sync the whole workspace the credential belongs to.

        Raises:
            CircuitOpenError: if Slack kept failing and the sync was abandoned.
        """
        logger.info("=" * 80)
        logger.info("STARTING WORKSPACE SYNC")
        logger.info("=" * 80)

        results: Dict[str, Any] = {}

        account = self.sync_account(credential)
        results["account"] = account.external_account_id
        results["users"] = self.sync_users(credential, account.id)

        channels = self.sync_channels(credential, account, join=join)
        results["channels"] = len(channels)

        total = ImportSummary()
        channel_results: Dict[str, ImportSummary] = {}
        for index, channel in enumerate(channels, 1):
            logger.info(f"[{index}/{len(channels)}] #{channel.name or channel.external_channel_id}")
            try:
                summary = self.importer.import_channel_history(channel, credential, incremental=incremental)
            except CircuitOpenError:
                logger.error("Circuit open, abandoning workspace sync")
                raise
            except Exception as e:
                logger.error(f"Failed to sync channel {channel.external_channel_id}: {e}")
                report_failure(self.reporter, e)
                total.complete = False
                continue

            channel_results[channel.external_channel_id] = summary
            total.merge(summary)

        results["messages"] = channel_results
        results["summary"] = total
        results["statistics"] = self.db_manager.get_statistics()

        logger.info("=" * 80)
        logger.info("SYNC COMPLETE")
        logger.info("=" * 80)
        logger.info(f"Messages saved: {total.saved} ({total.failed} failed)")
        logger.info(f"Threads: {total.threads} ({total.failed_threads} failed)")
        return results

    def download_attachments(self, credential: SlackCredential, limit: Optional[int] = None) -> int:
        """Download pending attachment files into the files directory.

        Returns the number of files downloaded. A failed download is
        reported and left pending for the next run.
        """
        self.files_dir.mkdir(parents=True, exist_ok=True)
        attachments = self.db_manager.get_pending_attachments(limit)
        logger.info(f"Downloading {len(attachments)} pending files")

        count = 0
        for attachment in attachments:
            name = safe_filename(attachment.name or attachment.external_attachment_id)
            file_path = self.files_dir / f"{attachment.external_attachment_id}_{name}"
            part_path = file_path.with_name(file_path.name + ".part")

            try:
                if not file_path.exists():
                    response = self.importer.call_api(
                        "files.download", self.client.fetch_file, attachment.url_private, credential
                    )
                    with closing(response), open(part_path, "wb") as f:
                        for chunk in response.iter_content(chunk_size=8192):
                            f.write(chunk)
                    part_path.replace(file_path)
                    logger.debug(f"File downloaded: {file_path}")

                self.db_manager.mark_attachment_downloaded(attachment.id, str(file_path))
                count += 1
            except CircuitOpenError:
                raise
            except Exception as e:
                logger.error(f"Failed to download file {attachment.external_attachment_id}: {e}")
                report_failure(self.reporter, e)
                if part_path.exists():
                    part_path.unlink()

        logger.info(f"Downloaded {count} files")
        return count
