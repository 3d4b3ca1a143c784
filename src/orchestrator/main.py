"""HTTP gateway - FastAPI application.

Provides:
- Health and readiness probes
- Chat API backed by the agent
- Tool catalog and a secret-free configuration view
- Web chat routes, and the Telegram bot when enabled
"""

import asyncio
import re
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import IncomingMessage
from domains import load_enabled_domains, register_domains
from domains.base import BaseAdapter
from orchestrator.agent import GENERIC_FAILURE, Agent, AgentProcessingError
from orchestrator.auth import AuthenticatedUser, AuthMiddleware
from orchestrator.channels.telegram import TelegramChannel
from orchestrator.channels.webchat import (
    WebChatChannel,
    WebChatSessionStore,
    create_webchat_router,
)
from orchestrator.llm import LLMProvider, create_llm_provider
from skills.audit import AuditLogger
from skills.injection import InjectionDetector
from skills.registry import ToolRegistry

logger = get_logger(__name__)

API_CHANNEL = "api"


class ChatRequest(BaseModel):
    """Chat request from an API client."""
    message: str = Field(..., min_length=1, description="User message")
    channel: str = Field(default=API_CHANNEL, description="Originating channel label")


class ChatReply(BaseModel):
    """Chat reply to an API client."""
    response: str


class HealthResponse(BaseModel):
    status: str
    llm_provider: str
    tool_count: int
    providers: list[str]


class ToolInfo(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


class ToolListResponse(BaseModel):
    tools: list[ToolInfo]
    count: int


def cors_options(origins: list[str]) -> dict[str, Any]:
    """Translate origin patterns such as ``http://localhost:*`` for CORSMiddleware."""
    if "*" in origins:
        return {"allow_origins": ["*"]}
    exact = [o for o in origins if "*" not in o]
    patterns = [re.escape(o).replace(r"\*", "[^/]*") for o in origins if "*" in o]
    options: dict[str, Any] = {"allow_origins": exact}
    if patterns:
        options["allow_origin_regex"] = "|".join(f"(?:{p})" for p in patterns)
    return options


def create_app(
    settings: Optional[Settings] = None,
    llm_provider: Optional[LLMProvider] = None,
    adapters: Optional[list[BaseAdapter]] = None,
) -> FastAPI:
    """
    Build the application and wire every component.

    Args:
        settings: Configuration (defaults to the cached settings)
        llm_provider: Override for the language model backend
        adapters: Override for the enabled tool provider adapters
    """
    settings = settings or get_settings()

    registry = ToolRegistry()
    if adapters is None:
        adapters = load_enabled_domains(settings)
    register_domains(registry, adapters)

    llm = llm_provider or create_llm_provider(settings.llm)
    audit_logger = AuditLogger(log_path=settings.audit_log_path, enabled=settings.enable_audit)
    agent = Agent(
        llm_provider=llm,
        registry=registry,
        adapters=adapters,
        detector=InjectionDetector(),
        audit_logger=audit_logger,
    )
    auth = AuthMiddleware(settings.security)

    async def handle_message(message: IncomingMessage) -> str:
        return await agent.process(message.user_id, message.channel, message.text)

    webchat: Optional[WebChatChannel] = None
    if settings.webchat.enabled:
        webchat = WebChatChannel(
            WebChatSessionStore(
                session_ttl_minutes=settings.webchat.session_ttl_minutes,
                max_messages=settings.webchat.max_messages,
            ),
            handle_message,
        )

    telegram: Optional[TelegramChannel] = None
    if settings.telegram.enabled:
        telegram = TelegramChannel(settings.telegram, handle_message)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, json_output=settings.is_production)
        logger.info(
            "Starting gateway",
            llm_provider=settings.llm.provider,
            model=settings.llm.model,
            providers=agent.enabled_providers,
            tool_count=len(registry),
        )

        tasks: list[asyncio.Task] = []
        if webchat is not None:
            tasks.append(asyncio.create_task(
                webchat.run_cleanup(settings.webchat.cleanup_interval_seconds)
            ))
        if telegram is not None:
            tasks.append(asyncio.create_task(telegram.run()))

        yield

        logger.info("Shutting down gateway")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await audit_logger.flush()
        await llm.close()
        for adapter in adapters:
            await adapter.close()

    app = FastAPI(
        title="Nomad Agent Gateway",
        description="Conversational agent for Azure DevOps and Trello",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.agent = agent
    app.state.auth = auth

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        **cors_options(settings.gateway.cors_origins),
    )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            llm_provider=settings.llm.provider,
            tool_count=len(registry),
            providers=agent.enabled_providers,
        )

    @app.get("/ready", tags=["System"])
    async def readiness() -> dict[str, str]:
        if not await llm.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="llm backend unavailable",
            )
        return {"status": "ready"}

    @app.post("/api/v1/chat", response_model=ChatReply, tags=["Chat"])
    async def chat(
        request: ChatRequest,
        user: AuthenticatedUser = Depends(auth),
    ) -> ChatReply:
        try:
            reply = await agent.process(user.user_id, request.channel, request.message)
        except AgentProcessingError:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=GENERIC_FAILURE,
            )
        return ChatReply(response=reply)

    @app.get("/api/v1/tools", response_model=ToolListResponse, tags=["Tools"])
    async def list_tools(user: AuthenticatedUser = Depends(auth)) -> ToolListResponse:
        tools = [
            ToolInfo(name=t.name, description=t.description, parameters=t.parameter_schema)
            for t in agent.list_tools()
        ]
        return ToolListResponse(tools=tools, count=len(tools))

    @app.get("/api/v1/config", tags=["System"])
    async def public_config(user: AuthenticatedUser = Depends(auth)) -> dict[str, Any]:
        return settings.public_view()

    if webchat is not None:
        app.include_router(create_webchat_router(webchat), dependencies=[Depends(auth)])

    return app


def main():
    """Run the gateway server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:create_app",
        factory=True,
        host=settings.gateway.host,
        port=settings.gateway.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
