#!/usr/bin/env python3
"""
Main FastAPI application for the support chat backend.
"""

import time
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ..agents.router_agent import AGENT_PROFILES, RouterAgent
from ..data.database import Database, get_database
from ..schemas.io_models import (
    ConversationList,
    ConversationOut,
    ConversationWithMessages,
    HealthResponse,
    MessageOut,
    SendMessageRequest,
    StreamEvent,
)
from ..utils.logger import get_logger
from .config import Config
from .controller import ChatController
from .errors import ApiError, register_exception_handlers
from .generate import GenerationClient
from .ratelimit import RateLimitResult, RateLimitStore, api_rate_limit, chat_rate_limit
from .session import ConversationManager

logger = get_logger()

ENDPOINTS = {
    "chat": "/api/chat/messages",
    "conversations": "/api/chat/conversations",
    "agents": "/api/agents",
    "health": "/api/health",
}


def create_app(database: Optional[Database] = None, llm: Optional[GenerationClient] = None) -> FastAPI:
    """Build the application around one database and one generation client."""
    database = database or get_database()
    llm = llm or GenerationClient()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting support chat backend...")
        await database.create_tables()
        await app.state.chat_limiter.start()
        await app.state.api_limiter.start()
        yield
        logger.info("Shutting down support chat backend...")
        await app.state.chat_limiter.stop()
        await app.state.api_limiter.stop()
        await database.dispose()

    app = FastAPI(
        title="AI Support System API",
        description="Multi-agent customer support chat with streamed responses",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in Config.CORS_ORIGIN.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-User-Id"],
        expose_headers=["Content-Length", "X-Request-Id", "X-RateLimit-Limit",
                        "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} {response.status_code} {duration:.0f}ms")
        return response

    register_exception_handlers(app)

    conversations = ConversationManager(database)
    app.state.database = database
    app.state.conversations = conversations
    app.state.controller = ChatController(RouterAgent(llm, database), conversations)
    app.state.chat_limiter = RateLimitStore(Config.RATE_LIMIT_WINDOW, Config.CHAT_RATE_LIMIT, prefix="chat")
    app.state.api_limiter = RateLimitStore(Config.RATE_LIMIT_WINDOW, Config.API_RATE_LIMIT, prefix="api")

    register_routes(app)
    return app


def get_controller(request: Request) -> ChatController:
    return request.app.state.controller


def get_conversations(request: Request) -> ConversationManager:
    return request.app.state.conversations


def resolve_user_id(header_user_id: Optional[str], body_user_id: Optional[str] = None) -> str:
    return header_user_id or body_user_id or Config.DEFAULT_USER_ID


async def event_stream(controller: ChatController, user_id: str, conversation_id: Optional[str], message: str):
    """Frame the exchange as server-sent events; closing this closes the exchange."""
    try:
        async with aclosing(controller.stream_chat(user_id, conversation_id, message)) as events:
            async for event in events:
                yield event.to_sse()
    except Exception as e:
        logger.error(f"Stream error: {e}")
        yield StreamEvent.error(str(e) or "Stream error").to_sse()


def register_routes(app: FastAPI):

    @app.get("/")
    async def root():
        """Service banner."""
        return {
            "name": "AI Support System API",
            "version": "1.0.0",
            "docs": "/api/health",
            "endpoints": ENDPOINTS,
        }

    @app.post("/api/chat/messages")
    async def send_message(
        body: SendMessageRequest,
        x_user_id: Optional[str] = Header(default=None),
        limit: RateLimitResult = Depends(chat_rate_limit),
        controller: ChatController = Depends(get_controller),
    ):
        """Send a message and stream the exchange as server-sent events."""
        user_id = resolve_user_id(x_user_id, body.user_id)
        return StreamingResponse(
            event_stream(controller, user_id, body.conversation_id, body.message),
            media_type="text/event-stream",
            headers={**limit.headers(), "Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/chat/messages/sync", dependencies=[Depends(chat_rate_limit)])
    async def send_message_sync(
        body: SendMessageRequest,
        x_user_id: Optional[str] = Header(default=None),
        controller: ChatController = Depends(get_controller),
    ):
        """Send a message and wait for the complete reply."""
        user_id = resolve_user_id(x_user_id, body.user_id)
        result = await controller.chat(user_id, body.conversation_id, body.message)
        return {"success": True, "data": result.dump()}

    @app.get("/api/chat/conversations", dependencies=[Depends(api_rate_limit)])
    async def list_conversations(
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        x_user_id: Optional[str] = Header(default=None),
        conversations: ConversationManager = Depends(get_conversations),
    ):
        user_id = resolve_user_id(x_user_id)
        items, total = await conversations.list_conversations(user_id, limit=limit, offset=offset)
        data = ConversationList(
            conversations=[ConversationOut.model_validate(c) for c in items],
            total=total,
        )
        return {"success": True, "data": data.dump()}

    @app.get("/api/chat/conversations/{conversation_id}", dependencies=[Depends(api_rate_limit)])
    async def get_conversation(
        conversation_id: str,
        conversations: ConversationManager = Depends(get_conversations),
    ):
        found = await conversations.get_conversation_with_messages(conversation_id)
        if found is None:
            raise ApiError.not_found("Conversation not found")

        conversation, messages = found
        data = ConversationWithMessages(
            conversation=ConversationOut.model_validate(conversation),
            messages=[MessageOut.model_validate(m) for m in messages],
        )
        return {"success": True, "data": data.dump()}

    @app.delete("/api/chat/conversations/{conversation_id}", dependencies=[Depends(api_rate_limit)])
    async def delete_conversation(
        conversation_id: str,
        conversations: ConversationManager = Depends(get_conversations),
    ):
        if not await conversations.delete_conversation(conversation_id):
            raise ApiError.not_found("Conversation not found")
        return {"success": True, "message": "Conversation deleted successfully"}

    @app.get("/api/agents", dependencies=[Depends(api_rate_limit)])
    async def list_agents(controller: ChatController = Depends(get_controller)):
        agents = [a.dump() for a in controller.list_agents()]
        return {"success": True, "data": {"agents": agents, "total": len(agents)}}

    @app.get("/api/agents/{agent_type}/capabilities", dependencies=[Depends(api_rate_limit)])
    async def get_agent_capabilities(agent_type: str, controller: ChatController = Depends(get_controller)):
        valid_types = [t.value for t in AGENT_PROFILES]
        if agent_type not in valid_types:
            raise ApiError.bad_request(f"Invalid agent type. Must be one of: {', '.join(valid_types)}")

        capabilities = controller.get_agent_capabilities(agent_type)
        if capabilities is None:
            raise ApiError.not_found("Agent not found")
        return {"success": True, "data": capabilities.dump()}

    @app.get("/api/health")
    async def health_check(request: Request):
        """Report database reachability and whether an API key is configured."""
        db_up = await request.app.state.database.ping()
        ai_up = Config.has_real_api_key()

        if db_up and ai_up:
            status = "healthy"
        elif db_up or ai_up:
            status = "degraded"
        else:
            status = "unhealthy"

        health = HealthResponse(
            status=status,
            timestamp=datetime.now(timezone.utc).isoformat(),
            services={"database": "up" if db_up else "down", "ai": "up" if ai_up else "down"},
        )
        return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=health.dump())


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
