"""Router agent: classifies each message and hands it to one responder.

The responder categories live in ``AGENT_PROFILES``, a plain table from
``AgentType`` to ``AgentProfile``. Routing, agent listing and capability
lookups all read that table.
"""
from contextlib import aclosing
from typing import AsyncIterator, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..app.generate import GenerationClient
from ..data.database import Database
from ..data.models import AgentType
from ..schemas.io_models import AgentContext, RoutingDecision, StreamEvent
from ..utils.logger import get_logger
from .base_agent import AgentProfile, Responder
from .billing_agent import BILLING_AGENT
from .order_agent import ORDER_AGENT
from .support_agent import SUPPORT_AGENT

logger = get_logger()

AGENT_PROFILES: Dict[AgentType, AgentProfile] = {
    AgentType.support: SUPPORT_AGENT,
    AgentType.order: ORDER_AGENT,
    AgentType.billing: BILLING_AGENT,
}
DEFAULT_AGENT = AgentType.support

NO_MESSAGE_REASON = "No user message found, defaulting to support"
FALLBACK_REASON = "Could not determine intent, defaulting to support"
FALLBACK_CONFIDENCE = 0.5

ROUTER_SYSTEM_PROMPT = """You are a Router Agent that analyzes customer queries and delegates them to the appropriate specialized agent.

Available Agents:
1. SUPPORT Agent: Handles general inquiries, FAQs, troubleshooting, account questions, how-to questions
2. ORDER Agent: Handles order status, tracking, delivery, order modifications, cancellations, returns
3. BILLING Agent: Handles payments, invoices, refunds, subscriptions, billing issues

Your Task:
Analyze the customer's message and determine which agent should handle it.

Classification Guidelines:
- Keywords like "track", "order", "delivery", "shipping", "cancel order", "modify order" → ORDER
- Keywords like "payment", "invoice", "refund", "subscription", "billing", "charge", "receipt" → BILLING
- Keywords like "how do I", "help", "problem", "issue", "question", "account", "password", "FAQ" → SUPPORT
- If unclear or could be multiple, prefer SUPPORT as the fallback

Consider conversation context when routing - if the user continues discussing the same topic, route to the same agent."""


def _fallback(reason: str, confidence: float) -> RoutingDecision:
    return RoutingDecision(agent=DEFAULT_AGENT.value, confidence=confidence, reasoning=reason)


class RouterAgent:
    """Delegator over the responder table."""

    def __init__(self, llm: GenerationClient, database: Database, max_steps: Optional[int] = None):
        self.llm = llm
        self.responders: Dict[AgentType, Responder] = {
            agent_type: Responder(profile, llm, database, max_steps=max_steps)
            for agent_type, profile in AGENT_PROFILES.items()
        }

    def get_agent(self, agent_type) -> Optional[Responder]:
        try:
            return self.responders.get(AgentType(agent_type))
        except ValueError:
            return None

    def get_all_agents(self) -> List[Responder]:
        return list(self.responders.values())

    def _routing_prompt(self, messages: List[Dict]) -> Optional[str]:
        last_user = next((m for m in reversed(messages) if m.get("role") == "user"), None)
        if last_user is None:
            return None

        recent_assistant = [m for m in messages if m.get("role") == "assistant"][-3:]
        if recent_assistant:
            conversation_context = "Recent conversation has been with agents handling previous queries."
        else:
            conversation_context = "This is the start of the conversation."

        return (
            f"Context: {conversation_context}\n\n"
            f"Current user message: \"{last_user.get('content', '')}\"\n\n"
            "Analyze this message and route it to the appropriate agent. "
            "Call the route tool with your decision."
        )

    async def classify(self, messages: List[Dict]) -> Tuple[Responder, RoutingDecision]:
        """
        Pick a responder for the latest user message.

        Never raises: a missing user message, a failed call or a decision that
        does not fit ``RoutingDecision`` all fall back to the support agent.
        """
        prompt = self._routing_prompt(messages)
        if prompt is None:
            logger.info("[ROUTER] No user message in history, using default agent")
            return self.responders[DEFAULT_AGENT], _fallback(NO_MESSAGE_REASON, 1.0)

        try:
            raw = await self.llm.generate_structured(
                ROUTER_SYSTEM_PROMPT,
                [{"role": "user", "content": prompt}],
                RoutingDecision,
                name="route",
                description="Route the query to the appropriate agent",
            )
            if raw is None:
                raise ValueError("no routing decision returned")
            decision = RoutingDecision.model_validate(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"[ROUTER] Malformed routing decision: {e}")
            decision = _fallback(FALLBACK_REASON, FALLBACK_CONFIDENCE)
        except Exception as e:
            logger.error(f"[ROUTER] Classification call failed: {e}")
            decision = _fallback(FALLBACK_REASON, FALLBACK_CONFIDENCE)

        responder = self.get_agent(decision.agent) or self.responders[DEFAULT_AGENT]
        logger.info(f"[ROUTER] Routed to {responder.name} ({decision.confidence:.2f}): {decision.reasoning}")
        return responder, decision

    async def process(self, context: AgentContext) -> AsyncIterator[StreamEvent]:
        """Yield thinking, routing, thinking, then the responder's events including its ``done``.

        Any failure ends the stream with a single ``error`` event.
        """
        try:
            yield StreamEvent.thinking("Analyzing your request...")
            responder, decision = await self.classify(context.messages)

            yield StreamEvent.routing(
                agent=responder.type.value,
                agent_name=responder.name,
                reason=decision.reasoning,
                confidence=decision.confidence,
            )
            yield StreamEvent.thinking(f"Connecting you with {responder.name}...")

            async with aclosing(responder.run(context)) as events:
                async for event in events:
                    yield event
        except Exception as e:
            logger.error(f"[ROUTER] Agent execution failed: {e}")
            yield StreamEvent.error(str(e) or "An unexpected error occurred")
