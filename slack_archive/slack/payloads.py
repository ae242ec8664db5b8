"""Pydantic models for Slack API payloads.

Remote JSON is validated here, at the normalization boundary, instead of
being trusted downstream. Messages are parsed into one of a closed set of
variants chosen by ``classify_message``; anything the archive does not know
about becomes ``UnrecognizedMessage`` rather than failing validation.
"""
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class PayloadError(ValueError):
    """A remote payload could not be validated."""


class MalformedTimestampError(PayloadError):
    """A Slack ``ts`` is missing or is not a finite number."""


class SlackModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class RemoteReaction(SlackModel):
    name: str
    users: List[str] = Field(default_factory=list)
    count: int = 0


class RemoteFile(SlackModel):
    id: str
    name: Optional[str] = None
    title: Optional[str] = None
    mimetype: Optional[str] = None
    filetype: Optional[str] = None
    size: Optional[int] = None
    url_private: Optional[str] = None
    url_private_download: Optional[str] = None
    permalink: Optional[str] = None


class RemoteAttachment(SlackModel):
    """Legacy message attachment: link unfurls and bot-formatted content."""
    id: Optional[int] = None
    title: Optional[str] = None
    title_link: Optional[str] = None
    text: Optional[str] = None
    fallback: Optional[str] = None
    pretext: Optional[str] = None
    from_url: Optional[str] = None
    service_name: Optional[str] = None
    author_name: Optional[str] = None
    bot_id: Optional[str] = None


# Subtypes Slack emits for membership and channel housekeeping events
SYSTEM_SUBTYPES = frozenset({
    "channel_join", "channel_leave", "channel_topic", "channel_purpose",
    "channel_name", "channel_archive", "channel_unarchive", "channel_convert_to_private",
    "group_join", "group_leave", "group_topic", "group_purpose", "group_name",
    "group_archive", "group_unarchive", "pinned_item", "unpinned_item",
    "bot_add", "bot_remove", "reminder_add", "tombstone",
})


class RemoteMessage(SlackModel):
    """Fields shared by every message variant."""
    kind: ClassVar[str] = "message"
    is_content: ClassVar[bool] = True

    type: str = "message"
    subtype: Optional[str] = None
    ts: str
    thread_ts: Optional[str] = None
    user: Optional[str] = None
    bot_id: Optional[str] = None
    text: str = ""
    blocks: Optional[List[Dict[str, Any]]] = None
    reactions: List[RemoteReaction] = Field(default_factory=list)
    files: List[RemoteFile] = Field(default_factory=list)
    attachments: List[RemoteAttachment] = Field(default_factory=list)
    reply_count: Optional[int] = None

    @field_validator("ts", "thread_ts", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("text", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return value or ""

    @property
    def author_id(self) -> Optional[str]:
        """Slack id of the author: the user, else the bot."""
        return self.user or self.bot_id

    @property
    def starts_thread(self) -> bool:
        """True for the parent of a thread, including a deleted parent kept as a tombstone."""
        return (self.thread_ts is not None and self.thread_ts == self.ts) or bool(self.reply_count)


class UserMessage(RemoteMessage):
    kind: ClassVar[str] = "user"


class BotMessage(RemoteMessage):
    kind: ClassVar[str] = "bot"
    username: Optional[str] = None


class FileShareMessage(RemoteMessage):
    kind: ClassVar[str] = "file_share"


class ThreadBroadcast(RemoteMessage):
    kind: ClassVar[str] = "thread_broadcast"


class SystemEvent(RemoteMessage):
    kind: ClassVar[str] = "system"
    is_content: ClassVar[bool] = False


class UnrecognizedMessage(RemoteMessage):
    kind: ClassVar[str] = "unrecognized"


MessageVariant = Union[
    UserMessage, BotMessage, FileShareMessage, ThreadBroadcast, SystemEvent, UnrecognizedMessage
]

_VARIANTS: Dict[str, Type[RemoteMessage]] = {
    variant.kind: variant
    for variant in (UserMessage, BotMessage, FileShareMessage, ThreadBroadcast, SystemEvent, UnrecognizedMessage)
}


def classify_message(payload: Dict[str, Any]) -> str:
    """Pick the variant kind for a raw message payload."""
    subtype = payload.get("subtype")

    if payload.get("type", "message") != "message" or subtype in SYSTEM_SUBTYPES:
        return SystemEvent.kind
    if subtype == "bot_message" or (not subtype and payload.get("bot_id") and not payload.get("user")):
        return BotMessage.kind
    if subtype == "file_share":
        return FileShareMessage.kind
    if subtype == "thread_broadcast":
        return ThreadBroadcast.kind
    if not subtype:
        return UserMessage.kind
    return UnrecognizedMessage.kind


def parse_message(payload: Dict[str, Any]) -> MessageVariant:
    """Validate a raw message payload into its variant.

    Raises:
        PayloadError: if the payload is not a mapping or fails validation.
    """
    if not isinstance(payload, dict):
        raise PayloadError(f"Expected a message object, got {type(payload).__name__}")

    variant = _VARIANTS[classify_message(payload)]
    try:
        return variant.model_validate(payload)
    except ValidationError as e:
        raise PayloadError(f"Invalid message payload (ts={payload.get('ts')!r}): {e}") from e


class RemoteProfile(SlackModel):
    display_name: Optional[str] = None
    display_name_normalized: Optional[str] = None
    real_name: Optional[str] = None
    real_name_normalized: Optional[str] = None
    image_original: Optional[str] = None


class RemoteUser(SlackModel):
    id: str
    name: Optional[str] = None
    is_bot: bool = False
    is_admin: Optional[bool] = None
    deleted: bool = False
    profile: RemoteProfile = Field(default_factory=RemoteProfile)


def parse_user(payload: Dict[str, Any]) -> RemoteUser:
    """Validate a raw users.list / users.info member.

    Raises:
        PayloadError: if the payload fails validation.
    """
    if not isinstance(payload, dict):
        raise PayloadError(f"Expected a user object, got {type(payload).__name__}")

    try:
        return RemoteUser.model_validate(payload)
    except ValidationError as e:
        raise PayloadError(f"Invalid user payload (id={payload.get('id')!r}): {e}") from e
