"""Support tools: FAQ search, conversation history and user profile lookups."""
import re
from typing import Optional

from pydantic import Field
from sqlalchemy import func, select

from ..data.models import FAQ, Conversation, Message, Order, User
from .registry import ActionArgs, ActionRegistry, iso

support_tools = ActionRegistry()

FAQ_LIMIT = 5
PREVIEW_LENGTH = 200
RECENT_MESSAGES = 10


class SearchFAQsArgs(ActionArgs):
    query: str = Field(min_length=1, description="Search query or keywords to find relevant FAQs")
    category: Optional[str] = Field(
        default=None, description="Optional category filter: account, support, orders, billing",
    )

class ConversationHistoryArgs(ActionArgs):
    user_id: str = Field(description="The user ID to retrieve conversation history for")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of recent conversations to retrieve")

class UserInfoArgs(ActionArgs):
    user_id: str = Field(description="The user ID to retrieve information for")


def _faq_matches(faq: FAQ, query: str, keywords) -> bool:
    q = query.lower()
    if q in faq.question.lower() or q in faq.answer.lower():
        return True
    faq_keywords = {k.lower() for k in (faq.keywords or [])}
    return bool(faq_keywords & keywords)


@support_tools.action(
    "searchFAQs",
    SearchFAQsArgs,
    "Search the FAQ database for relevant answers to customer questions. Use keywords or "
    "phrases to find matching FAQs.",
)
async def search_faqs(args: SearchFAQsArgs, db):
    stmt = select(FAQ).order_by(FAQ.id)
    if args.category:
        stmt = stmt.where(FAQ.category == args.category)
    candidates = (await db.scalars(stmt)).all()

    keywords = set(re.split(r"\s+", args.query.lower().strip()))
    faqs = [f for f in candidates if _faq_matches(f, args.query, keywords)][:FAQ_LIMIT]

    if not faqs:
        return {"found": False, "message": "No FAQs found matching the query"}

    return {
        "found": True,
        "count": len(faqs),
        "faqs": [{"question": f.question, "answer": f.answer, "category": f.category} for f in faqs],
    }


def _preview(content: str) -> str:
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


@support_tools.action(
    "getConversationHistory",
    ConversationHistoryArgs,
    "Retrieve the conversation history for the current user to understand context and previous interactions.",
)
async def get_conversation_history(args: ConversationHistoryArgs, db):
    stmt = (
        select(Conversation)
        .where(Conversation.user_id == args.user_id)
        .order_by(Conversation.updated_at.desc())
        .limit(args.limit)
    )
    conversations = (await db.scalars(stmt)).all()

    if not conversations:
        return {"found": False, "message": "No previous conversations found for this user"}

    out = []
    for conv in conversations:
        recent = (await db.scalars(
            select(Message)
            .where(Message.conversation_id == conv.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(RECENT_MESSAGES)
        )).all()
        out.append({
            "id": conv.id,
            "title": conv.title,
            "summary": conv.summary,
            "lastActivity": iso(conv.updated_at),
            "recentMessages": [
                {
                    "role": m.role.value,
                    "content": _preview(m.content),
                    "agentType": m.agent_type.value if m.agent_type else None,
                }
                for m in reversed(recent)
            ],
        })

    return {"found": True, "count": len(out), "conversations": out}


@support_tools.action(
    "getUserInfo",
    UserInfoArgs,
    "Get basic user information for personalization and verification.",
)
async def get_user_info(args: UserInfoArgs, db):
    user = await db.get(User, args.user_id)
    if not user:
        return {"found": False, "message": "User not found"}

    total_orders = await db.scalar(select(func.count()).select_from(Order).where(Order.user_id == user.id))
    total_conversations = await db.scalar(
        select(func.count()).select_from(Conversation).where(Conversation.user_id == user.id)
    )

    return {
        "found": True,
        "user": {
            "name": user.name or "Valued Customer",
            "email": user.email,
            "memberSince": iso(user.created_at),
            "totalOrders": total_orders,
            "previousConversations": total_conversations,
        },
    }
