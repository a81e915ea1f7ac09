"""Database models for users, usage counters and group chats."""
from sqlalchemy import Column, String, Integer, Float, DateTime, Date, ForeignKey, Text, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()

# Metered actions -> counter column on User
USAGE_COLUMNS = {
    "searches": "searches",
    "messages": "messages",
    "audioPlays": "audio_plays",
    "lessons": "lessons",
    "quizzes": "quizzes",
}


class User(Base):
    """Per-user record: profile, daily usage counters and session pointers."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False, default="")
    hobbies = Column(String, nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    native_language = Column(String, nullable=False, default="English (US)")

    # Written only by the payment webhook
    subscription_status = Column(String, nullable=False, default="free")

    # Daily usage counters; reset together when last_reset_date is not today
    searches = Column(Integer, nullable=False, default=0)
    messages = Column(Integer, nullable=False, default=0)
    audio_plays = Column(Integer, nullable=False, default=0)
    lessons = Column(Integer, nullable=False, default=0)
    quizzes = Column(Integer, nullable=False, default=0)
    last_reset_date = Column(Date, nullable=True)

    saved_chat = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    teach_me_cache = Column(JSON, nullable=True)
    active_group_id = Column(String, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GroupChat(Base):
    """Shared multi-party conversation."""
    __tablename__ = "group_chats"

    id = Column(String, primary_key=True, index=True)
    creator_id = Column(String, nullable=False, index=True)
    partner = Column(JSON, nullable=False)
    topic = Column(String, nullable=True)
    # False once the creator has left; history stays readable, no more bot turns
    active = Column(Boolean, nullable=False, default=True)
    share_link = Column(String, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    messages = relationship("GroupMessage", back_populates="group", cascade="all, delete-orphan")


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(String, ForeignKey("group_chats.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    group = relationship("GroupChat", back_populates="members")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )


class GroupMessage(Base):
    """Individual messages in a group chat. Ordered by timestamp, not insert order."""
    __tablename__ = "group_messages"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(String, ForeignKey("group_chats.id"), nullable=False, index=True)
    sender = Column(String, nullable=False)  # "user" | "ai"
    sender_id = Column(String, nullable=True)
    sender_name = Column(String, nullable=True)
    text = Column(Text, nullable=False)
    correction = Column(Text, nullable=True)
    audio_ref = Column(String, nullable=True)
    timestamp = Column(Float, nullable=False, index=True)  # epoch seconds

    group = relationship("GroupChat", back_populates="messages")
