"""SQLAlchemy models for archived Slack data."""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, Integer, BigInteger, Float, DateTime,
    ForeignKey, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class Account(Base):
    """Slack workspace/team an archive belongs to."""
    __tablename__ = "accounts"
    
    id = Column(String(36), primary_key=True, default=new_id)
    external_account_id = Column(String(20), nullable=False, unique=True)
    name = Column(String(255))
    domain = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    users = relationship("User", back_populates="account", cascade="all, delete-orphan")
    channels = relationship("Channel", back_populates="account", cascade="all, delete-orphan")


class User(Base):
    """Slack user or bot."""
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    external_user_id = Column(String(20), nullable=False)
    display_name = Column(String(255))
    profile_image_url = Column(String(500))
    is_bot = Column(Boolean, default=False)
    is_admin = Column(Boolean, default=False)
    anonymous_alias = Column(String(100))  # assigned once, never recomputed
    created_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    account = relationship("Account", back_populates="users")
    messages = relationship("Message", back_populates="user")
    
    __table_args__ = (
        UniqueConstraint("account_id", "external_user_id", name="uq_user_account_external"),
        Index("idx_user_account", "account_id"),
    )


class Channel(Base):
    """Slack channel/conversation."""
    __tablename__ = "channels"
    
    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    external_channel_id = Column(String(20), nullable=False)
    name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    account = relationship("Account", back_populates="channels")
    threads = relationship("Thread", back_populates="channel", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="channel", cascade="all, delete-orphan")
    sync_status = relationship("SyncStatus", back_populates="channel", uselist=False)
    
    __table_args__ = (
        UniqueConstraint("account_id", "external_channel_id", name="uq_channel_account_external"),
        Index("idx_channel_account", "account_id"),
    )


class Thread(Base):
    """Slack thread, created once per (channel, thread_ts)."""
    __tablename__ = "threads"
    
    id = Column(String(36), primary_key=True, default=new_id)
    channel_id = Column(String(36), ForeignKey("channels.id"), nullable=False)
    external_thread_id = Column(String(30), nullable=False)
    slug = Column(String(100))
    sent_at = Column(BigInteger, default=0)  # earliest reply, epoch milliseconds
    created_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    channel = relationship("Channel", back_populates="threads")
    messages = relationship("Message", back_populates="thread")
    
    __table_args__ = (
        UniqueConstraint("channel_id", "external_thread_id", name="uq_thread_channel_external"),
        Index("idx_thread_sent_at", "channel_id", "sent_at"),
    )


class Message(Base):
    """Slack message."""
    __tablename__ = "messages"
    
    id = Column(String(36), primary_key=True, default=new_id)
    channel_id = Column(String(36), ForeignKey("channels.id"), nullable=False)
    thread_id = Column(String(36), ForeignKey("threads.id"))  # NULL if not in a thread
    user_id = Column(String(36), ForeignKey("users.id"))  # NULL if author unresolved
    external_message_id = Column(String(30), nullable=False)  # Slack ts
    external_user_id = Column(String(20))
    body = Column(Text)
    blocks = Column(JSON)
    sent_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    channel = relationship("Channel", back_populates="messages")
    thread = relationship("Thread", back_populates="messages")
    user = relationship("User", back_populates="messages")
    reactions = relationship("Reaction", back_populates="message", cascade="all, delete-orphan")
    attachments = relationship("Attachment", back_populates="message", cascade="all, delete-orphan")
    
    __table_args__ = (
        UniqueConstraint("channel_id", "external_message_id", name="uq_message_channel_external"),
        Index("idx_message_channel_sent_at", "channel_id", "sent_at"),
        Index("idx_message_thread", "thread_id"),
        Index("idx_message_user", "user_id"),
    )


class Reaction(Base):
    """Emoji reaction summary for a message."""
    __tablename__ = "reactions"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(36), ForeignKey("messages.id"), nullable=False)
    name = Column(String(100), nullable=False)
    count = Column(Integer, default=0)
    users = Column(JSON)  # external user ids
    
    # Relationships
    message = relationship("Message", back_populates="reactions")
    
    __table_args__ = (
        UniqueConstraint("message_id", "name", name="uq_reaction_message_name"),
    )


class Attachment(Base):
    """File shared with a message."""
    __tablename__ = "attachments"
    
    id = Column(String(36), primary_key=True, default=new_id)
    message_id = Column(String(36), ForeignKey("messages.id"), nullable=False)
    external_attachment_id = Column(String(30), nullable=False)
    name = Column(String(500))
    title = Column(String(500))
    mimetype = Column(String(100))
    filetype = Column(String(50))
    size = Column(Integer)
    url_private = Column(String(1000))
    permalink = Column(String(1000))
    local_path = Column(String(1000))
    downloaded = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    message = relationship("Message", back_populates="attachments")
    
    __table_args__ = (
        UniqueConstraint("message_id", "external_attachment_id", name="uq_attachment_message_external"),
        Index("idx_attachment_downloaded", "downloaded"),
    )


class SyncStatus(Base):
    """Track synchronization status for channels."""
    __tablename__ = "sync_status"
    
    channel_id = Column(String(36), ForeignKey("channels.id"), primary_key=True)
    last_synced_ts = Column(Float)
    last_sync_time = Column(DateTime)
    is_complete = Column(Boolean, default=False)
    message_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    channel = relationship("Channel", back_populates="sync_status")
