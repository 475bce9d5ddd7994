"""Pydantic models for API I/O and agent contracts.

Wire payloads use camelCase keys (``conversationId``, ``agentName`` ...) so the
stream can be rendered by the existing web client unchanged.
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..data.models import AgentType, MessageRole

EventType = Literal["thinking", "routing", "tool_call", "tool_result", "text_delta", "done", "error"]
TERMINAL_EVENTS = ("done", "error")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class StreamEvent(BaseModel):
    """One record of the ordered chat stream: ``{type, data}``."""
    type: EventType
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    @classmethod
    def thinking(cls, message: str, **extra) -> "StreamEvent":
        return cls(type="thinking", data={"message": message, **extra})

    @classmethod
    def routing(cls, agent: str, agent_name: str, reason: str, confidence: float) -> "StreamEvent":
        return cls(type="routing", data={
            "agent": agent,
            "agentName": agent_name,
            "reason": reason,
            "confidence": confidence,
        })

    @classmethod
    def tool_call(cls, tool: str, args: Dict[str, Any], call_id: Optional[str] = None) -> "StreamEvent":
        return cls(type="tool_call", data={"tool": tool, "args": args, "callId": call_id})

    @classmethod
    def tool_result(cls, tool: str, result: Any, call_id: Optional[str] = None) -> "StreamEvent":
        return cls(type="tool_result", data={"tool": tool, "result": result, "callId": call_id})

    @classmethod
    def text_delta(cls, delta: str) -> "StreamEvent":
        return cls(type="text_delta", data={"delta": delta})

    @classmethod
    def done(cls, **data) -> "StreamEvent":
        return cls(type="done", data=data)

    @classmethod
    def error(cls, message: str, code: Optional[str] = None) -> "StreamEvent":
        data = {"message": message}
        if code:
            data["code"] = code
        return cls(type="error", data=data)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.data, default=str)}\n\n"


class ToolInvocation(BaseModel):
    """A recorded action call nested inside an assistant message."""
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class RoutingDecision(BaseModel):
    """Structural decision returned by the classification call."""
    agent: Literal["support", "order", "billing"]
    confidence: float = Field(ge=0, le=1)
    reasoning: str


class AgentContext(BaseModel):
    user_id: str
    conversation_id: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)  # [{role, content}]


class AgentResponse(BaseModel):
    content: str
    tool_calls: List[ToolInvocation] = Field(default_factory=list)


# ============ API Request/Response Schemas ============

class SendMessageRequest(CamelModel):
    conversation_id: Optional[str] = None
    message: str = Field(min_length=1)
    user_id: Optional[str] = None


class ChatResult(CamelModel):
    conversation_id: str
    message_id: int
    agent_type: str
    response: str
    tools_used: List[str] = Field(default_factory=list)


class ConversationOut(CamelModel):
    id: str
    user_id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")
    created_at: datetime
    updated_at: datetime


class MessageOut(CamelModel):
    id: int
    conversation_id: str
    role: MessageRole
    content: str
    agent_type: Optional[AgentType] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    created_at: datetime


class ConversationWithMessages(CamelModel):
    conversation: ConversationOut
    messages: List[MessageOut]


class ConversationList(CamelModel):
    conversations: List[ConversationOut]
    total: int


class AgentInfo(CamelModel):
    type: str
    name: str
    description: str


class ActionInfo(CamelModel):
    name: str
    description: str


class AgentCapabilities(CamelModel):
    type: str
    name: str
    description: str
    capabilities: List[str]
    tools: List[ActionInfo]


class HealthResponse(CamelModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: str
    services: Dict[str, Literal["up", "down"]]
