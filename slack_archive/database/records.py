"""Plain records handed to the database manager by the ingestion pipeline."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class ReactionRecord:
    name: str
    count: int = 0
    users: List[str] = field(default_factory=list)


@dataclass
class AttachmentRecord:
    external_attachment_id: str
    name: Optional[str] = None
    title: Optional[str] = None
    mimetype: Optional[str] = None
    filetype: Optional[str] = None
    size: Optional[int] = None
    url_private: Optional[str] = None
    permalink: Optional[str] = None


@dataclass
class MessageRecord:
    """A message ready to be upserted by (channel_id, external_message_id).
    
    ``user_id`` and ``thread_id`` start unresolved and are filled in by the
    reconciler before persistence.
    """
    channel_id: str
    external_message_id: str
    sent_at: datetime
    body: str = ""
    blocks: Optional[List[Dict[str, Any]]] = None
    external_thread_id: Optional[str] = None
    external_user_id: Optional[str] = None
    user_id: Optional[str] = None
    thread_id: Optional[str] = None
    reactions: List[ReactionRecord] = field(default_factory=list)
    attachments: List[AttachmentRecord] = field(default_factory=list)
    
    @property
    def is_thread_root(self) -> bool:
        return bool(self.external_thread_id) and self.external_thread_id == self.external_message_id


@dataclass
class UserRecord:
    account_id: str
    external_user_id: str
    display_name: Optional[str]
    profile_image_url: Optional[str]
    is_bot: bool
    is_admin: bool
    anonymous_alias: str
