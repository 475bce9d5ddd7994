"""Controller: runs one chat exchange from inbound message to persisted reply.

The controller creates the conversation when needed, stores the user's
message, hands the history to the router agent, relays every event and, once
the responder has finished, stores the assistant's reply before announcing
the final ``done``.
"""
import asyncio
import weakref
from contextlib import aclosing
from typing import AsyncIterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..agents.router_agent import AGENT_PROFILES, DEFAULT_AGENT, RouterAgent
from ..data.models import AgentType, MessageRole
from ..schemas.io_models import (
    ActionInfo,
    AgentCapabilities,
    AgentContext,
    AgentInfo,
    ChatResult,
    StreamEvent,
)
from ..utils.logger import get_logger
from .errors import AgentExecutionError, ApiError
from .session import ConversationManager, ConversationNotFoundError

logger = get_logger()


class ChatController:
    def __init__(self, router: RouterAgent, conversations: ConversationManager):
        self.router = router
        self.conversations = conversations
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def stream_chat(
        self, user_id: str, conversation_id: Optional[str], message: str
    ) -> AsyncIterator[StreamEvent]:
        """
        Process one user message and yield the ordered event stream.

        The stream always ends with exactly one ``done`` or ``error``. The
        ``done`` is emitted only after the assistant message is stored and
        carries ``conversationId``, ``messageId``, ``agentType`` and
        ``fullText``. On error the user's message stays stored and nothing
        else is written.
        """
        logger.info(f"[WORKFLOW] 1. Received message from {user_id} (conversation={conversation_id})")
        try:
            if not conversation_id:
                conversation = await self.conversations.create_conversation(user_id)
                conversation_id = conversation.id
                yield StreamEvent.thinking("Starting new conversation...", conversationId=conversation_id)

            # held until the terminal event so one conversation's exchanges persist in arrival order
            async with self._lock_for(conversation_id):
                try:
                    await self.conversations.add_message(conversation_id, MessageRole.user, message)
                except ConversationNotFoundError as e:
                    yield StreamEvent.error(str(e), "NOT_FOUND")
                    return

                history = await self.conversations.get_messages(conversation_id)
                logger.info(f"[WORKFLOW] 2. Loaded {len(history)} messages of history")
                context = AgentContext(
                    user_id=user_id,
                    conversation_id=conversation_id,
                    messages=[{"role": m.role.value, "content": m.content} for m in history],
                )

                agent_type = DEFAULT_AGENT
                done = None
                async with aclosing(self.router.process(context)) as events:
                    async for event in events:
                        if event.type == "routing":
                            agent_type = AgentType(event.data["agent"])
                        elif event.type == "done":
                            done = event.data
                            break
                        elif event.type == "error":
                            logger.error(f"[WORKFLOW] Agent pipeline failed: {event.data.get('message')}")
                            yield event
                            return
                        yield event

                if done is None:
                    yield StreamEvent.error("The agent finished without a response")
                    return

                logger.info(f"[WORKFLOW] 3. Persisting {agent_type.value} response")
                try:
                    saved = await self.conversations.complete_exchange(
                        conversation_id,
                        done["fullText"],
                        agent_type,
                        tool_calls=done.get("toolCalls") or None,
                        # first completed exchange
                        set_title=len(history) == 1,
                    )
                except ConversationNotFoundError as e:
                    yield StreamEvent.error(str(e), "NOT_FOUND")
                    return

                logger.info(f"[WORKFLOW] 4. Completed exchange, message {saved.id}")
                yield StreamEvent.done(
                    conversationId=conversation_id,
                    messageId=saved.id,
                    agentType=agent_type.value,
                    fullText=done["fullText"],
                )
        except SQLAlchemyError as e:
            logger.error(f"[DB] Storage failure while handling message: {e}")
            yield StreamEvent.error("Failed to save the conversation", "STORAGE_ERROR")

    async def chat(self, user_id: str, conversation_id: Optional[str], message: str) -> ChatResult:
        """Same exchange as ``stream_chat``, drained into a single result."""
        tools_used: List[str] = []
        async with aclosing(self.stream_chat(user_id, conversation_id, message)) as events:
            async for event in events:
                if event.type == "tool_call" and event.data["tool"] not in tools_used:
                    tools_used.append(event.data["tool"])
                elif event.type == "error":
                    if event.data.get("code") == "NOT_FOUND":
                        raise ApiError.not_found(event.data["message"])
                    raise AgentExecutionError(event.data["message"], event.data.get("code"))
                elif event.type == "done":
                    return ChatResult(
                        conversation_id=event.data["conversationId"],
                        message_id=event.data["messageId"],
                        agent_type=event.data["agentType"],
                        response=event.data["fullText"],
                        tools_used=tools_used,
                    )
        raise AgentExecutionError("The agent finished without a response")

    def list_agents(self) -> List[AgentInfo]:
        return [
            AgentInfo(type=profile.type.value, name=profile.name, description=profile.description)
            for profile in AGENT_PROFILES.values()
        ]

    def get_agent_capabilities(self, agent_type: str) -> Optional[AgentCapabilities]:
        try:
            profile = AGENT_PROFILES.get(AgentType(agent_type))
        except ValueError:
            return None
        if profile is None:
            return None

        return AgentCapabilities(
            type=profile.type.value,
            name=profile.name,
            description=profile.description,
            capabilities=profile.capabilities,
            tools=[ActionInfo(**t) for t in profile.tools_list],
        )
