"""Web chat channel.

Keeps display history per browser session in memory and exposes it under
``/webchat/api``. Only the newest user text is sent to the agent.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import IncomingMessage
from orchestrator.agent import GENERIC_FAILURE, AgentProcessingError
from orchestrator.channels import MessageHandler

logger = get_logger(__name__)

CHANNEL = "webchat"


class WebChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class WebChatSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    messages: list[WebChatMessage] = Field(default_factory=list)


class SessionNotFoundError(Exception):
    """No live session with the given id."""
    pass


class WebChatSessionStore:
    """
    In-memory session store.

    Responsibilities:
    - Create, fetch and delete sessions
    - Append messages, keeping the most recent ``max_messages``
    - Expire sessions older than the TTL
    """

    def __init__(self, session_ttl_minutes: int = 60, max_messages: int = 100) -> None:
        self.ttl = timedelta(minutes=session_ttl_minutes)
        self.max_messages = max_messages
        self._sessions: dict[str, WebChatSession] = {}
        self._lock = asyncio.Lock()

    def _expired(self, session: WebChatSession) -> bool:
        return datetime.utcnow() - session.created_at > self.ttl

    async def create(self, user_id: str) -> WebChatSession:
        session = WebChatSession(user_id=user_id)
        async with self._lock:
            self._sessions[session.id] = session

        logger.info("Webchat session created", session_id=session.id, user=user_id)
        return session

    async def get(self, session_id: str) -> Optional[WebChatSession]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session):
                del self._sessions[session_id]
                return None
            return session

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            removed = self._sessions.pop(session_id, None) is not None

        if removed:
            logger.info("Webchat session deleted", session_id=session_id)
        return removed

    async def add_message(self, session_id: str, role: str, content: str) -> WebChatMessage:
        """
        Append a message to a live session.

        Raises:
            SessionNotFoundError: If the session does not exist or expired
        """
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        message = WebChatMessage(role=role, content=content)
        async with self._lock:
            session.messages.append(message)
            if len(session.messages) > self.max_messages:
                session.messages = session.messages[-self.max_messages:]
        return message

    async def messages(self, session_id: str) -> list[WebChatMessage]:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        async with self._lock:
            return list(session.messages)

    async def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns the number removed."""
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._expired(s)]
            for session_id in expired:
                del self._sessions[session_id]

        if expired:
            logger.info("Cleaned up expired webchat sessions", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class WebChatChannel:
    """Bridges web chat sessions to the message handler."""

    def __init__(self, store: WebChatSessionStore, handler: MessageHandler) -> None:
        self.store = store
        self.handler = handler

    async def send_message(self, session_id: str, content: str) -> tuple[WebChatMessage, WebChatMessage]:
        """
        Record the user text, answer it and record the reply.

        Raises:
            SessionNotFoundError: If the session does not exist or expired
            AgentProcessingError: If the reply could not be produced
        """
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        user_message = await self.store.add_message(session_id, "user", content)

        reply = await self.handler(IncomingMessage(
            channel=CHANNEL,
            user_id=session.user_id,
            username=session.user_id,
            text=content,
            chat_id=session.id,
            metadata={"session_id": session.id},
        ))

        assistant_message = await self.store.add_message(session_id, "assistant", reply)
        logger.info("Webchat message processed", session_id=session.id, user=session.user_id)
        return user_message, assistant_message

    async def run_cleanup(self, interval_seconds: float) -> None:
        """Periodically drop expired sessions until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.store.cleanup_expired()


class CreateSessionRequest(BaseModel):
    user_id: str = "anonymous"


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


class SendMessageResponse(BaseModel):
    user_message: WebChatMessage
    assistant_message: WebChatMessage


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")


def create_webchat_router(channel: WebChatChannel) -> APIRouter:
    """Build the ``/webchat/api`` routes for a channel."""
    router = APIRouter(prefix="/webchat/api", tags=["webchat"])

    @router.post("/sessions", response_model=WebChatSession, status_code=status.HTTP_201_CREATED)
    async def create_session(request: Optional[CreateSessionRequest] = None) -> WebChatSession:
        return await channel.store.create((request or CreateSessionRequest()).user_id)

    @router.get("/sessions/{session_id}", response_model=WebChatSession)
    async def get_session(session_id: str) -> WebChatSession:
        session = await channel.store.get(session_id)
        if session is None:
            raise _not_found()
        return session

    @router.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> dict[str, str]:
        await channel.store.delete(session_id)
        return {"status": "deleted"}

    @router.post("/sessions/{session_id}/messages", response_model=SendMessageResponse)
    async def send_message(session_id: str, request: SendMessageRequest) -> SendMessageResponse:
        try:
            user_message, assistant_message = await channel.send_message(session_id, request.content)
        except SessionNotFoundError:
            raise _not_found()
        except AgentProcessingError:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=GENERIC_FAILURE,
            )
        return SendMessageResponse(user_message=user_message, assistant_message=assistant_message)

    @router.get("/sessions/{session_id}/messages", response_model=list[WebChatMessage])
    async def get_messages(session_id: str) -> list[WebChatMessage]:
        try:
            return await channel.store.messages(session_id)
        except SessionNotFoundError:
            raise _not_found()

    return router
