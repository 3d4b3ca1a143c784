"""Shared models, configuration and logging for the Nomad agent."""

from shared.models import (
    AdapterOutcome,
    ChatResponse,
    Handled,
    HandledError,
    NotMine,
    Role,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    Turn,
    ValidationOutcome,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AdapterOutcome",
    "ChatResponse",
    "Handled",
    "HandledError",
    "NotMine",
    "Role",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "Turn",
    "ValidationOutcome",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
