"""Chat session and message models for conversation persistence."""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import CheckConstraint
from sqlmodel import Field, Relationship, SQLModel

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
TYPE_TEXT = "text"
TYPE_IMAGE = "image"

_clock_lock = threading.Lock()
_last_tick: datetime | None = None


def utcnow() -> datetime:
    """Current UTC time, strictly increasing across calls in this process.

    Messages are ordered by ``created_at`` alone, so two inserts landing on the
    same clock reading are nudged apart by a microsecond.
    """
    global _last_tick
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_tick is not None and now <= _last_tick:
            now = _last_tick + timedelta(microseconds=1)
        _last_tick = now
        return now


def new_id() -> str:
    return str(uuid.uuid4())


class ChatSession(SQLModel, table=True):
    __tablename__ = "chat_sessions"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    messages: list["Message"] = Relationship(back_populates="chat", cascade_delete=True)


class Message(SQLModel, table=True):
    __tablename__ = "messages"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        CheckConstraint("type IN ('text', 'image')", name="ck_messages_type"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    chat_id: str = Field(foreign_key="chat_sessions.id", index=True, ondelete="CASCADE")
    role: str  # "user" | "assistant"
    content: str
    type: str = Field(default=TYPE_TEXT)  # "text" | "image"
    image_url: Optional[str] = None

    chat: Optional[ChatSession] = Relationship(back_populates="messages")
