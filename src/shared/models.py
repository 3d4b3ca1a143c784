"""Core data models for the Nomad agent.

This module defines the shared data structures passed between the channels,
the orchestrator, the language model gateway and the tool adapters.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Role tag of a transcript turn."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """
    A model-emitted request to invoke a named tool.

    Arguments stay as the raw JSON text the model produced; parsing happens
    at dispatch time so that malformed arguments can be reported back.
    """
    id: str
    name: str
    raw_arguments: str = ""


class Turn(BaseModel):
    """One entry of the transcript."""
    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Turn":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: Optional[list[ToolCallRequest]] = None
    ) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])


class ToolCallResult(BaseModel):
    """Outcome of executing a single tool call."""
    for_request_id: str
    output_text: str
    succeeded: bool = True

    def to_turn(self) -> Turn:
        """Render the result as a tool turn answering its request."""
        return Turn(role=Role.TOOL, content=self.output_text, tool_call_id=self.for_request_id)


class ToolDescriptor(BaseModel):
    """
    Declarative description of a tool offered to the language model.

    Registered once at startup per enabled provider and shared read-only.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Globally unique tool name")
    description: str = Field(..., description="Description for LLM usage")
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema of the tool arguments",
    )

    def to_llm_tool(self) -> dict[str, Any]:
        """Render in the OpenAI function-tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


class ValidationOutcome(BaseModel):
    """Result of a registry check. Never stored."""
    allowed: bool
    reason: str = ""


# Language model gateway responses

class AssistantMessage(BaseModel):
    """Message part of a chat choice."""
    role: Role = Role.ASSISTANT
    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)


class Choice(BaseModel):
    """One candidate completion."""
    index: int = 0
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    finish_reason: str = "stop"


class Usage(BaseModel):
    """Token accounting reported by the backend."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Uniform response of the language model gateway."""
    id: str = ""
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


# Adapter outcomes

class NotMine(BaseModel):
    """The adapter does not own the requested tool."""
    kind: str = "not_mine"


class Handled(BaseModel):
    """The adapter executed the tool successfully."""
    kind: str = "handled"
    output: str


class HandledError(BaseModel):
    """The adapter owns the tool but execution failed."""
    kind: str = "handled_error"
    message: str


AdapterOutcome = Union[NotMine, Handled, HandledError]


# Audit

class AuditEventType(str, Enum):
    """Kinds of audit events."""
    MESSAGE_RECEIVED = "message_received"
    TOOL_DISPATCHED = "tool_dispatched"
    INJECTION_DETECTED = "injection_detected"


class AuditEntry(BaseModel):
    """
    Audit log entry.

    Captures who sent what through which channel, and which tools ran.
    """
    id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    event: AuditEventType
    user_id: str
    channel: str
    request_id: str
    tool_name: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: Optional[str] = None
    detail: Optional[str] = None


# Channels

class IncomingMessage(BaseModel):
    """Channel-neutral representation of a user message."""
    channel: str
    user_id: str
    username: str = ""
    text: str
    chat_id: str = ""
    is_group: bool = False
    reply_to_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
