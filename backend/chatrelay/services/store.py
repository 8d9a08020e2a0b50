"""Conversation store - durable record of chat sessions and their messages.

Writes never raise: a chat that keeps answering is preferred over one that
fails because a database write did. Failures are logged and the caller gets a
degraded result (a freshly minted session id, or ``None`` for a message).
Reads propagate errors to the caller.
"""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from chatrelay.core.config import settings
from chatrelay.models.conversation import (
    ROLE_ASSISTANT,
    ROLE_USER,
    TYPE_TEXT,
    ChatSession,
    Message,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, engine: Engine, title_length: int | None = None):
        self._engine = engine
        self._title_length = title_length or settings.session_title_length

    def _title_for(self, prompt: str) -> str:
        return prompt.strip()[: self._title_length]

    def resolve_session(self, chat_id: str | None, prompt: str) -> str:
        """Make sure a session row exists for ``chat_id`` and return its id.

        Unknown ids supplied by the client are honored and created as-is.
        Known sessions only get their ``updated_at`` touched.
        """
        try:
            with Session(self._engine) as session:
                existing = session.get(ChatSession, chat_id) if chat_id else None
                if existing:
                    existing.updated_at = utcnow()
                    session.add(existing)
                    session.commit()
                    return existing.id

                created = ChatSession(title=self._title_for(prompt))
                if chat_id:
                    created.id = chat_id
                session.add(created)
                session.commit()
                logger.debug(f"Created chat session {created.id}")
                return created.id
        except IntegrityError as e:
            if chat_id:
                # A concurrent request created the same client-supplied id first.
                logger.debug(f"Chat session {chat_id} was created concurrently")
                return chat_id
            fallback_id = new_id()
            logger.error(f"Failed to create chat session, continuing as {fallback_id}: {e}")
            return fallback_id
        except SQLAlchemyError as e:
            fallback_id = new_id()
            logger.error(f"Failed to resolve chat session {chat_id!r}, continuing as {fallback_id}: {e}")
            return fallback_id

    def add_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        type: str = TYPE_TEXT,
        image_url: str | None = None,
    ) -> Message | None:
        """Append a message and touch the owning session's ``updated_at``."""
        try:
            with Session(self._engine) as session:
                msg = Message(
                    chat_id=chat_id,
                    role=role,
                    content=content,
                    type=type,
                    image_url=image_url,
                )
                session.add(msg)

                owner = session.get(ChatSession, chat_id)
                if owner:
                    owner.updated_at = msg.created_at
                    session.add(owner)

                session.commit()
                session.refresh(msg)
                return msg
        except SQLAlchemyError as e:
            logger.error(f"Failed to save {role} message for chat {chat_id}: {e}")
            return None

    def add_user_message(self, chat_id: str, content: str, type: str = TYPE_TEXT) -> Message | None:
        return self.add_message(chat_id, ROLE_USER, content, type=type)

    def add_assistant_message(
        self, chat_id: str, content: str, type: str = TYPE_TEXT, image_url: str | None = None
    ) -> Message | None:
        return self.add_message(chat_id, ROLE_ASSISTANT, content, type=type, image_url=image_url)

    def get_session(self, chat_id: str) -> ChatSession | None:
        with Session(self._engine) as session:
            return session.get(ChatSession, chat_id)

    def list_sessions(self, limit: int | None = None) -> list[ChatSession]:
        """Most recently updated sessions first."""
        with Session(self._engine) as session:
            return list(
                session.exec(
                    select(ChatSession)
                    .order_by(ChatSession.updated_at.desc())  # type: ignore
                    .limit(limit or settings.history_session_limit)
                ).all()
            )

    def list_messages(self, chat_id: str) -> list[Message]:
        """Messages of one session in creation order."""
        with Session(self._engine) as session:
            return list(
                session.exec(
                    select(Message)
                    .where(Message.chat_id == chat_id)
                    .order_by(Message.created_at)  # type: ignore
                ).all()
            )


def get_store() -> ConversationStore:
    from chatrelay.core.database import engine

    return ConversationStore(engine)
