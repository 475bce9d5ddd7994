#!/usr/bin/env python3
"""
Conversation storage for the support chat backend.

This module keeps conversations and their messages in the relational
database. Messages are append-only; the history handed to the agents is the
ordered list of a conversation's messages.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..data.database import Database
from ..data.models import AgentType, Conversation, Message, MessageRole, utcnow
from ..utils.logger import get_logger
from .config import Config

logger = get_logger()

NEW_CONVERSATION_TITLE = "New Conversation"


class ConversationNotFoundError(LookupError):
    """A message was appended to a conversation that does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


def make_title(content: str, max_length: int = None) -> str:
    """Verbatim when short enough, otherwise cut and marked with an ellipsis."""
    max_length = max_length or Config.TITLE_MAX_LENGTH
    if len(content) > max_length:
        return content[:max_length - 3] + "..."
    return content


class ConversationManager:
    """Manages conversations and their message history."""

    def __init__(self, database: Database):
        self.database = database

    async def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        async with self.database.session() as db:
            conversation = Conversation(user_id=user_id, title=title)
            db.add(conversation)
            await db.commit()
            await db.refresh(conversation)
        logger.info(f"[DB] Created conversation {conversation.id} for {user_id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self.database.session() as db:
            return await db.get(Conversation, conversation_id)

    async def get_conversation_with_messages(
        self, conversation_id: str
    ) -> Optional[Tuple[Conversation, List[Message]]]:
        """
        Load a conversation and all of its messages.

        Returns:
            ``(conversation, messages)`` with messages oldest first, or None
            when the conversation does not exist.
        """
        async with self.database.session() as db:
            conversation = await db.get(Conversation, conversation_id)
            if conversation is None:
                return None
            messages = (await db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.id)
            )).all()
        return conversation, list(messages)

    async def list_conversations(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> Tuple[List[Conversation], int]:
        async with self.database.session() as db:
            conversations = (await db.scalars(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc())
                .limit(limit)
                .offset(offset)
            )).all()
            total = await db.scalar(
                select(func.count()).select_from(Conversation).where(Conversation.user_id == user_id)
            )
        return list(conversations), total or 0

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages. False when it did not exist."""
        async with self.database.session() as db:
            await db.execute(delete(Message).where(Message.conversation_id == conversation_id))
            result = await db.execute(delete(Conversation).where(Conversation.id == conversation_id))
            await db.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"[DB] Deleted conversation {conversation_id}")
        return deleted

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        agent_type: Optional[AgentType] = None,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
    ) -> Message:
        """Append a message and refresh the conversation's ``updated_at``."""
        async with self.database.session() as db:
            conversation = await db.get(Conversation, conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)

            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                agent_type=agent_type,
                tool_calls=tool_calls,
            )
            db.add(message)
            conversation.updated_at = utcnow()
            await db.commit()
            await db.refresh(message)
        return message

    async def get_messages(
        self,
        conversation_id: str,
        limit: int = None,
        before: Optional[datetime] = None,
    ) -> List[Message]:
        """The latest ``limit`` messages (optionally older than ``before``), oldest first."""
        limit = limit or Config.HISTORY_LIMIT
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)

        async with self.database.session() as db:
            messages = (await db.scalars(stmt)).all()
        return list(reversed(messages))

    async def update_conversation(
        self,
        conversation_id: str,
        title: Optional[str] = None,
        summary: Optional[str] = None,
    ) -> Optional[Conversation]:
        async with self.database.session() as db:
            conversation = await db.get(Conversation, conversation_id)
            if conversation is None:
                return None
            if title is not None:
                conversation.title = title
            if summary is not None:
                conversation.summary = summary
            await db.commit()
            await db.refresh(conversation)
        return conversation

    async def complete_exchange(
        self,
        conversation_id: str,
        content: str,
        agent_type: AgentType,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        set_title: bool = False,
    ) -> Message:
        """
        Store the assistant's reply in a single transaction.

        The message insert, the ``updated_at`` refresh and, when ``set_title``
        is true, the title taken from the first user message commit together.
        Any failure rolls all of them back.
        """
        async with self.database.session() as db:
            try:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    raise ConversationNotFoundError(conversation_id)

                message = Message(
                    conversation_id=conversation_id,
                    role=MessageRole.assistant,
                    content=content,
                    agent_type=agent_type,
                    tool_calls=tool_calls,
                )
                db.add(message)
                conversation.updated_at = utcnow()
                if set_title:
                    conversation.title = await self._first_user_title(db, conversation_id)
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise
        logger.info(f"[DB] Stored assistant message {message.id} in {conversation_id}")
        return message

    async def _first_user_title(self, db: AsyncSession, conversation_id: str) -> str:
        first = await db.scalar(
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.role == MessageRole.user)
            .order_by(Message.created_at, Message.id)
            .limit(1)
        )
        return make_title(first.content) if first is not None else NEW_CONVERSATION_TITLE

    async def generate_title(self, conversation_id: str) -> str:
        """Title the conversation after its first user message."""
        async with self.database.session() as db:
            conversation = await db.get(Conversation, conversation_id)
            title = await self._first_user_title(db, conversation_id)
            if conversation is not None and title != NEW_CONVERSATION_TITLE:
                conversation.title = title
                await db.commit()
        return title
