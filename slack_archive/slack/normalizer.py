"""Map validated Slack payloads onto local records.

Pure functions: no network, no database. Author and thread references are
left unresolved for the reconciler to fill in.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..database.records import AttachmentRecord, MessageRecord, ReactionRecord, UserRecord
from ..utils.slugs import generate_alias
from .payloads import MalformedTimestampError, RemoteMessage, RemoteUser

EPOCH = datetime(1970, 1, 1)


def ts_to_epoch_ms(ts: Optional[str]) -> int:
    """Convert a Slack ``ts`` ("1609459200.000100") to epoch milliseconds.

    Sub-millisecond digits are truncated: ``floor(float(ts) * 1000)``.
    """
    if ts is None or isinstance(ts, bool):
        raise MalformedTimestampError(f"Invalid Slack timestamp: {ts!r}")

    try:
        seconds = float(ts)
    except (TypeError, ValueError) as e:
        raise MalformedTimestampError(f"Invalid Slack timestamp: {ts!r}") from e

    if not math.isfinite(seconds):
        raise MalformedTimestampError(f"Invalid Slack timestamp: {ts!r}")

    return math.floor(seconds * 1000)


def epoch_ms_to_datetime(epoch_ms: int) -> datetime:
    """Naive UTC datetime for an epoch-milliseconds value."""
    return EPOCH + timedelta(milliseconds=epoch_ms)


def ts_to_sent_at(ts: Optional[str]) -> datetime:
    """Naive UTC datetime for a Slack ``ts``, at millisecond precision."""
    return epoch_ms_to_datetime(ts_to_epoch_ms(ts))


def datetime_to_epoch_ms(value: datetime) -> int:
    return (value - EPOCH) // timedelta(milliseconds=1)


def _rich_text(elements: Iterable[Any]) -> List[str]:
    """Collect text from nested rich_text block elements."""
    parts: List[str] = []
    for element in elements or []:
        if not isinstance(element, dict):
            continue
        if isinstance(element.get("text"), str):
            parts.append(element["text"])
        elif element.get("type") == "link" and element.get("url"):
            parts.append(element["url"])
        parts.extend(_rich_text(element.get("elements")))
    return parts


def blocks_text(blocks: Optional[List[Dict[str, Any]]]) -> str:
    """Plain text carried by a message's blocks."""
    lines: List[str] = []
    for block in blocks or []:
        if not isinstance(block, dict):
            continue
        parts: List[str] = []
        text = block.get("text")
        if isinstance(text, dict) and isinstance(text.get("text"), str):
            parts.append(text["text"])
        parts.extend(_rich_text(block.get("elements")))
        line = "".join(parts).strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def message_body(message: RemoteMessage) -> str:
    """Body text for a message of any shape.

    The message text; for bot posts and unfurls with no text, the text of
    their attachments; failing that, the text nested in rich-text blocks.
    """
    if message.text:
        return message.text

    attachment_text = "\n".join(
        attachment.text or attachment.fallback or attachment.title or ""
        for attachment in message.attachments
    ).strip()
    if attachment_text:
        return attachment_text

    return blocks_text(message.blocks)


def to_reaction_records(message: RemoteMessage) -> List[ReactionRecord]:
    return [
        ReactionRecord(name=reaction.name, count=reaction.count, users=list(reaction.users))
        for reaction in message.reactions
    ]


def to_attachment_records(message: RemoteMessage) -> List[AttachmentRecord]:
    return [
        AttachmentRecord(
            external_attachment_id=file.id,
            name=file.name,
            title=file.title,
            mimetype=file.mimetype,
            filetype=file.filetype,
            size=file.size,
            url_private=file.url_private_download or file.url_private,
            permalink=file.permalink,
        )
        for file in message.files
    ]


def to_local_message_params(message: RemoteMessage, channel_id: str) -> Optional[MessageRecord]:
    """Map a validated message onto a ``MessageRecord``.

    Returns None for system events (joins, leaves, topic changes...), which
    are not archived.

    Raises:
        MalformedTimestampError: if ``ts`` is not a finite number.
    """
    if not message.is_content:
        return None

    return MessageRecord(
        channel_id=channel_id,
        external_message_id=message.ts,
        sent_at=ts_to_sent_at(message.ts),
        body=message_body(message),
        blocks=message.blocks,
        external_thread_id=message.thread_ts,
        external_user_id=message.author_id,
        user_id=None,
        thread_id=None,
        reactions=to_reaction_records(message),
        attachments=to_attachment_records(message),
    )


def display_name(user: RemoteUser) -> Optional[str]:
    """First non-empty of display_name, display_name_normalized, real_name, real_name_normalized."""
    profile = user.profile
    return (
        profile.display_name
        or profile.display_name_normalized
        or profile.real_name
        or profile.real_name_normalized
        or None
    )


def to_local_user_params(user: RemoteUser, account_id: str) -> UserRecord:
    """Map a validated Slack user onto a ``UserRecord`` with a fresh alias."""
    return UserRecord(
        account_id=account_id,
        external_user_id=user.id,
        display_name=display_name(user),
        profile_image_url=user.profile.image_original,
        is_bot=user.is_bot,
        is_admin=user.is_admin or False,
        anonymous_alias=generate_alias(),
    )
