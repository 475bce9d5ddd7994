"""Responder: one specialised agent driving the tool loop for its domain."""
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
from typing import Any, AsyncIterator, Dict, List, Optional

from ..app.generate import GenerationClient
from ..data.database import Database
from ..data.models import AgentType
from ..schemas.io_models import AgentContext, AgentResponse, StreamEvent, ToolInvocation
from ..tools.registry import ActionRegistry
from ..utils.logger import get_logger

logger = get_logger()

GUIDELINES = """Guidelines:
- Be helpful, professional, and concise
- Use available tools to fetch real data when needed
- If you cannot help with a request, explain why clearly
- Always maintain a friendly and supportive tone"""


@dataclass(frozen=True)
class AgentProfile:
    """Static configuration of one responder category."""
    type: AgentType
    name: str
    description: str
    system_prompt: str
    tools: ActionRegistry

    @property
    def capabilities(self) -> List[str]:
        return [f"{a.name}: {a.description or 'No description'}" for a in self.tools.list_actions()]

    @property
    def tools_list(self) -> List[Dict[str, str]]:
        return [{"name": a.name, "description": a.description or "No description"} for a in self.tools.list_actions()]


class Responder:
    """Runs one profile against the text-generation capability and reports its steps as events."""

    def __init__(self, profile: AgentProfile, llm: GenerationClient, database: Database,
                 max_steps: Optional[int] = None):
        self.profile = profile
        self.llm = llm
        self.database = database
        self.max_steps = max_steps

    @property
    def type(self) -> AgentType:
        return self.profile.type

    @property
    def name(self) -> str:
        return self.profile.name

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            f"{self.profile.system_prompt}\n\n"
            f"Current Context:\n"
            f"- User ID: {context.user_id}\n"
            f"- Conversation ID: {context.conversation_id}\n\n"
            f"{GUIDELINES}"
        )

    async def _execute(self, context: AgentContext, name: str, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        action = self.profile.tools.get(name)
        if action is not None and "user_id" in action.args_model.model_fields:
            # user-scoped actions always run as the caller
            args = {k: v for k, v in (args or {}).items() if k not in ("user_id", "userId")}
            args["userId"] = context.user_id
        return await self.profile.tools.execute(name, args, self.database)

    async def run(self, context: AgentContext) -> AsyncIterator[StreamEvent]:
        """
        Yield tool_call / tool_result / text_delta events, then one ``done``.

        The ``done`` payload is rebuilt here from the events actually relayed,
        so its text is exactly the concatenation of the deltas and every
        recorded invocation had a tool_call before its tool_result.
        """
        logger.info(f"[WORKFLOW] Executing {self.name} for conversation {context.conversation_id}")
        full_text = ""
        requested: Dict[str, ToolInvocation] = {}
        invocations: List[ToolInvocation] = []

        loop = self.llm.run_tool_loop(
            self.build_system_prompt(context),
            context.messages,
            self.profile.tools.to_llm_schemas(),
            partial(self._execute, context),
            max_steps=self.max_steps,
        )
        async with aclosing(loop) as events:
            async for event in events:
                if event.type == "done":
                    break
                if event.type == "text_delta":
                    full_text += event.data["delta"]
                elif event.type == "tool_call":
                    requested[event.data.get("callId") or event.data["tool"]] = ToolInvocation(
                        tool=event.data["tool"], args=event.data.get("args") or {},
                    )
                elif event.type == "tool_result":
                    key = event.data.get("callId") or event.data["tool"]
                    invocation = requested.pop(key, None)
                    if invocation is None:
                        logger.warning(f"[TOOL] Dropping result without a matching call: {event.data['tool']}")
                        continue
                    invocation.result = event.data.get("result")
                    invocations.append(invocation)
                yield event

        logger.info(f"[WORKFLOW] {self.name} finished: {len(full_text)} chars, {len(invocations)} tool calls")
        yield StreamEvent.done(
            fullText=full_text,
            toolCalls=[inv.model_dump(mode="json") for inv in invocations],
        )

    async def generate(self, context: AgentContext) -> AgentResponse:
        """Run the same loop to completion and return only the final payload."""
        done = None
        async with aclosing(self.run(context)) as events:
            async for event in events:
                if event.type == "done":
                    done = event.data
        return AgentResponse(
            content=done["fullText"],
            tool_calls=[ToolInvocation(**t) for t in done["toolCalls"]],
        )
