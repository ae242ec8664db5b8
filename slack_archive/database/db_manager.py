"""Database manager for archived Slack data.

Handles all persistence for the ingestion pipeline:
- Connection management (SQLite or PostgreSQL)
- Schema initialization
- Find-or-create and upsert operations keyed by remote identifiers
- Statistics and reporting

Every write that can race with another importer (a historical backfill and
a live import of the same channel) is keyed by a unique constraint. When a
concurrent writer wins the insert, the resulting IntegrityError is resolved
by re-reading the row it created.
"""
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable
from sqlalchemy import create_engine, func
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from ..config import Config
from ..utils.logger import get_logger
from .models import (
    Base, Account, User, Channel, Thread, Message, Reaction,
    Attachment, SyncStatus
)
from .records import MessageRecord, UserRecord, ReactionRecord, AttachmentRecord

logger = get_logger(__name__)


class DatabaseManager:
    """Manages database connections and operations."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database manager.

        Args:
            database_url: Database connection string. If None, uses Config.DATABASE_URL
        """
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = create_engine(self.database_url, **self._engine_options())
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.init_db()

    def _engine_options(self) -> Dict[str, Any]:
        url = make_url(self.database_url)
        options: Dict[str, Any] = {"echo": False, "pool_pre_ping": True}

        if url.get_backend_name() == "sqlite":
            # Thread replies are written from a worker pool
            options["connect_args"] = {"check_same_thread": False}
            if not url.database or url.database == ":memory:":
                options["poolclass"] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            options["pool_recycle"] = 3600

        return options

    def init_db(self):
        """Initialize database schema."""
        logger.info("Initializing database schema")
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema initialized")

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    def _find_or_create(self, model, lookup: Dict[str, Any], defaults: Dict[str, Any]):
        """Return the row matching ``lookup``, inserting it with ``defaults`` if absent."""
        with self.get_session() as session:
            instance = session.query(model).filter_by(**lookup).first()
            if instance:
                return instance

            instance = model(**lookup, **defaults)
            session.add(instance)
            try:
                session.commit()
                return instance
            except IntegrityError:
                # A concurrent writer created the row first
                session.rollback()
                return session.query(model).filter_by(**lookup).one()

    # Account operations
    def save_account(self, team_data: Dict[str, Any]) -> Account:
        """Save or update an account from a team.info payload."""
        account = self._find_or_create(
            Account,
            {"external_account_id": team_data["id"]},
            {"name": team_data.get("name", ""), "domain": team_data.get("domain", "")},
        )

        name = team_data.get("name", account.name)
        domain = team_data.get("domain", account.domain)
        if (account.name, account.domain) != (name, domain):
            with self.get_session() as session:
                account = session.get(Account, account.id)
                account.name = name
                account.domain = domain
                session.commit()

        return account

    def find_account(self, external_account_id: str) -> Optional[Account]:
        """Find an account by Slack team id."""
        with self.get_session() as session:
            return session.query(Account).filter_by(external_account_id=external_account_id).first()

    def get_account(self, account_id: str) -> Optional[Account]:
        with self.get_session() as session:
            return session.get(Account, account_id)

    # Channel operations
    def find_or_create_channel(
        self,
        external_channel_id: str,
        account_id: str,
        name: Optional[str] = None
    ) -> Channel:
        """Find a channel by Slack id within an account, creating it on first sight."""
        return self._find_or_create(
            Channel,
            {"external_channel_id": external_channel_id, "account_id": account_id},
            {"name": name},
        )

    def find_channel(self, external_channel_id: str, account_id: str) -> Optional[Channel]:
        with self.get_session() as session:
            return session.query(Channel).filter_by(
                external_channel_id=external_channel_id, account_id=account_id
            ).first()

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        with self.get_session() as session:
            return session.get(Channel, channel_id)

    def get_all_channels(self, account_id: Optional[str] = None) -> List[Channel]:
        """Get all channels, optionally for one account."""
        with self.get_session() as session:
            query = session.query(Channel)
            if account_id:
                query = query.filter(Channel.account_id == account_id)
            return query.order_by(Channel.name).all()

    # User operations
    def find_user(self, external_user_id: Optional[str], account_id: str) -> Optional[User]:
        """Find a user by Slack id within an account."""
        if not external_user_id:
            return None

        with self.get_session() as session:
            return session.query(User).filter_by(
                external_user_id=external_user_id, account_id=account_id
            ).first()

    def find_or_create_user(self, record: UserRecord) -> User:
        """Find a user by (account, Slack id), creating it from ``record`` if absent.

        An existing user is returned unchanged; its alias is never recomputed.
        """
        fields = asdict(record)
        lookup = {
            "account_id": fields.pop("account_id"),
            "external_user_id": fields.pop("external_user_id"),
        }
        return self._find_or_create(User, lookup, fields)

    def create_many_users(self, records: List[UserRecord], skip_duplicates: bool = True) -> int:
        """Bulk insert users. Returns the number of users inserted.

        With ``skip_duplicates`` users already stored for their account, and
        repeats within ``records``, are skipped rather than raising.
        """
        if not records:
            return 0

        with self.get_session() as session:
            pending = list(records)

            if skip_duplicates:
                account_ids = {record.account_id for record in records}
                existing = {
                    (account_id, external_user_id)
                    for account_id, external_user_id in session.query(
                        User.account_id, User.external_user_id
                    ).filter(User.account_id.in_(account_ids))
                }

                pending = []
                for record in records:
                    key = (record.account_id, record.external_user_id)
                    if key in existing:
                        continue
                    existing.add(key)
                    pending.append(record)

            session.add_all([User(**asdict(record)) for record in pending])
            try:
                session.commit()
                return len(pending)
            except IntegrityError:
                session.rollback()
                if not skip_duplicates:
                    raise

        # A concurrent import inserted some of these users in the meantime
        logger.debug("Bulk user insert conflicted; inserting row by row")
        return sum(1 for record in pending if self._insert_user_if_absent(record))

    def _insert_user_if_absent(self, record: UserRecord) -> bool:
        with self.get_session() as session:
            session.add(User(**asdict(record)))
            try:
                session.commit()
                return True
            except IntegrityError:
                session.rollback()
                return False

    def get_all_users(self, account_id: Optional[str] = None) -> List[User]:
        """Get all users."""
        with self.get_session() as session:
            query = session.query(User)
            if account_id:
                query = query.filter(User.account_id == account_id)
            return query.all()

    # Thread operations
    def find_thread(self, external_thread_id: Optional[str], channel_id: str) -> Optional[Thread]:
        """Find a thread by Slack thread_ts within a channel."""
        if not external_thread_id:
            return None

        with self.get_session() as session:
            return session.query(Thread).filter_by(
                external_thread_id=external_thread_id, channel_id=channel_id
            ).first()

    def find_or_create_thread(
        self,
        external_thread_id: str,
        channel_id: str,
        sent_at: int,
        slug: str
    ) -> Thread:
        """Find a thread, creating it on first sight.

        ``sent_at`` (epoch milliseconds) and ``slug`` are only used by the
        call that creates the thread.
        """
        return self._find_or_create(
            Thread,
            {"external_thread_id": external_thread_id, "channel_id": channel_id},
            {"sent_at": sent_at, "slug": slug},
        )

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        with self.get_session() as session:
            return session.get(Thread, thread_id)

    # Message operations
    def _query_message(self, session: Session, record: MessageRecord) -> Optional[Message]:
        return session.query(Message).filter_by(
            channel_id=record.channel_id,
            external_message_id=record.external_message_id
        ).first()

    def _new_message(self, record: MessageRecord) -> Message:
        return Message(
            channel_id=record.channel_id,
            external_message_id=record.external_message_id,
            external_user_id=record.external_user_id,
            thread_id=record.thread_id,
            user_id=record.user_id,
            body=record.body,
            blocks=record.blocks,
            sent_at=record.sent_at,
        )

    def _apply_content(self, message: Message, record: MessageRecord):
        message.body = record.body
        message.blocks = record.blocks
        message.external_user_id = record.external_user_id
        if record.thread_id:
            message.thread_id = record.thread_id
        if record.user_id:
            message.user_id = record.user_id
        message.updated_at = datetime.utcnow()

    def _sync_reactions(self, message: Message, reactions: Iterable[ReactionRecord]):
        """Make the message's reactions match ``reactions`` (by emoji name)."""
        existing = {reaction.name: reaction for reaction in message.reactions}
        incoming = set()

        for record in reactions:
            incoming.add(record.name)
            reaction = existing.get(record.name)
            if reaction is None:
                message.reactions.append(
                    Reaction(name=record.name, count=record.count, users=list(record.users))
                )
            else:
                reaction.count = record.count
                reaction.users = list(record.users)

        for name, reaction in existing.items():
            if name not in incoming:
                message.reactions.remove(reaction)

    def _sync_attachments(self, message: Message, attachments: Iterable[AttachmentRecord]):
        """Make the message's attachments match ``attachments`` (by Slack file id)."""
        existing = {attachment.external_attachment_id: attachment for attachment in message.attachments}
        incoming = set()

        for record in attachments:
            incoming.add(record.external_attachment_id)
            fields = asdict(record)
            attachment = existing.get(record.external_attachment_id)
            if attachment is None:
                message.attachments.append(Attachment(**fields))
            else:
                for key, value in fields.items():
                    setattr(attachment, key, value)

        for external_id, attachment in existing.items():
            if external_id not in incoming:
                message.attachments.remove(attachment)

    def create_message(self, record: MessageRecord) -> Message:
        """Insert a new message. Raises IntegrityError if it already exists."""
        with self.get_session() as session:
            message = self._new_message(record)
            session.add(message)
            self._sync_reactions(message, record.reactions)
            self._sync_attachments(message, record.attachments)
            session.commit()
            return message

    def create_or_update_message(self, record: MessageRecord) -> Message:
        """Upsert a message keyed by (channel_id, external_message_id).

        Content fields (body, blocks, reactions, attachments) follow the
        latest import. Thread and author are only overwritten when resolved.
        """
        with self.get_session() as session:
            message = self._query_message(session, record)

            if message is None:
                message = self._new_message(record)
                session.add(message)
                try:
                    session.flush()
                except IntegrityError:
                    # A concurrent writer inserted the same message first
                    session.rollback()
                    message = self._query_message(session, record)
                    if message is None:
                        raise
                    self._apply_content(message, record)
            else:
                self._apply_content(message, record)

            self._sync_reactions(message, record.reactions)
            self._sync_attachments(message, record.attachments)
            session.commit()
            return message

    def get_message(self, channel_id: str, external_message_id: str) -> Optional[Message]:
        with self.get_session() as session:
            return session.query(Message).filter_by(
                channel_id=channel_id, external_message_id=external_message_id
            ).first()

    def get_messages_by_channel(self, channel_id: str, limit: Optional[int] = None) -> List[Message]:
        """Get messages for a channel, newest first."""
        with self.get_session() as session:
            query = (
                session.query(Message)
                .filter(Message.channel_id == channel_id)
                .order_by(Message.sent_at.desc())
            )
            return query.limit(limit).all() if limit else query.all()

    def get_thread_messages(self, thread_id: str) -> List[Message]:
        """Get messages in a thread, oldest first."""
        with self.get_session() as session:
            return (
                session.query(Message)
                .filter(Message.thread_id == thread_id)
                .order_by(Message.sent_at.asc())
                .all()
            )

    def get_messages_count(self, channel_id: Optional[str] = None) -> int:
        """Get total message count."""
        with self.get_session() as session:
            query = session.query(func.count(Message.id))
            if channel_id:
                query = query.filter(Message.channel_id == channel_id)
            return query.scalar()

    def get_message_reactions(self, message_id: str) -> List[Reaction]:
        with self.get_session() as session:
            return session.query(Reaction).filter_by(message_id=message_id).order_by(Reaction.name).all()

    def get_message_attachments(self, message_id: str) -> List[Attachment]:
        with self.get_session() as session:
            return session.query(Attachment).filter_by(message_id=message_id).all()

    # Attachment operations
    def get_pending_attachments(self, limit: Optional[int] = None) -> List[Attachment]:
        """Get attachments whose files have not been downloaded yet."""
        with self.get_session() as session:
            query = session.query(Attachment).filter(
                Attachment.downloaded == False,  # noqa: E712
                Attachment.url_private.isnot(None)
            ).order_by(Attachment.created_at)
            if limit:
                query = query.limit(limit)
            return query.all()

    def mark_attachment_downloaded(self, attachment_id: str, local_path: str):
        """Record where an attachment's file was stored."""
        with self.get_session() as session:
            attachment = session.get(Attachment, attachment_id)
            if attachment is None:
                raise ValueError(f"Unknown attachment: {attachment_id}")
            attachment.local_path = local_path
            attachment.downloaded = True
            session.commit()

    # Sync status operations
    def update_sync_status(
        self,
        channel_id: str,
        last_ts: Optional[float],
        is_complete: bool = False,
        message_count: int = 0,
        error_count: int = 0,
        last_error: Optional[str] = None
    ):
        """Update sync status for channel. A missing ``last_ts`` keeps the previous one."""
        with self.get_session() as session:
            sync_status = session.get(SyncStatus, channel_id)

            if sync_status is None:
                sync_status = SyncStatus(channel_id=channel_id)
                session.add(sync_status)

            if last_ts is not None and (sync_status.last_synced_ts is None or last_ts > sync_status.last_synced_ts):
                sync_status.last_synced_ts = last_ts
            sync_status.last_sync_time = datetime.utcnow()
            sync_status.is_complete = is_complete
            sync_status.message_count = message_count
            sync_status.error_count = error_count
            sync_status.last_error = last_error

            session.commit()

    def get_sync_status(self, channel_id: str) -> Optional[SyncStatus]:
        """Get sync status for channel."""
        with self.get_session() as session:
            return session.get(SyncStatus, channel_id)

    def get_statistics(self) -> Dict[str, Any]:
        """Get database statistics."""
        with self.get_session() as session:
            return {
                "accounts": session.query(func.count(Account.id)).scalar(),
                "users": session.query(func.count(User.id)).scalar(),
                "channels": session.query(func.count(Channel.id)).scalar(),
                "threads": session.query(func.count(Thread.id)).scalar(),
                "messages": session.query(func.count(Message.id)).scalar(),
                "reactions": session.query(func.count(Reaction.id)).scalar(),
                "attachments": session.query(func.count(Attachment.id)).scalar(),
            }
