"""Database package."""
from .db_manager import DatabaseManager
from .models import (
    Base,
    Account,
    User,
    Channel,
    Thread,
    Message,
    Reaction,
    Attachment,
    SyncStatus,
)
from .records import MessageRecord, UserRecord, ReactionRecord, AttachmentRecord

__all__ = [
    "DatabaseManager",
    "Base",
    "Account",
    "User",
    "Channel",
    "Thread",
    "Message",
    "Reaction",
    "Attachment",
    "SyncStatus",
    "MessageRecord",
    "UserRecord",
    "ReactionRecord",
    "AttachmentRecord",
]
