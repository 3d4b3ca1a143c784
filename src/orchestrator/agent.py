"""Agent orchestration loop.

Turns one user message into one reply by driving a bounded, multi-round
conversation with the language model:
- Screen and sanitize the untrusted text
- Seed a fresh transcript
- Let the model request tools, validate and dispatch them in order
- Stop when the model answers without tools, or after MAX_ITERATIONS rounds

The agent keeps no state between calls. Conversation continuity, if any,
belongs to the channel.
"""

import json
import uuid
from typing import Any, Optional, Sequence

from shared.logging import get_logger
from shared.models import (
    Handled,
    HandledError,
    NotMine,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    Turn,
)
from domains.base import BaseAdapter
from orchestrator.llm import LLMError, LLMProvider
from skills.audit import AuditLogger
from skills.injection import InjectionDetector
from skills.registry import ToolRegistry

logger = get_logger(__name__)

GENERIC_FAILURE = "failed to process message"
NOT_PERMITTED = "Error executing tool: operation not permitted"

BASE_SYSTEM_PROMPT = """You are Nomad Agent, a helpful and intelligent AI assistant.

## Your capabilities
- Answer questions clearly and objectively
- Help with programming and development tasks
"""

GUIDELINES = """
## Guidelines
- Be concise and direct
- Use Markdown formatting when appropriate
- When you use a tool, explain what you are doing
- If a tool returns an error, explain the issue to the user
- Never make up information; use tools to get accurate data
- Reply in the user's language
"""


class AgentProcessingError(Exception):
    """Raised when a message cannot be answered. Carries no internal detail."""

    def __init__(self, message: str = GENERIC_FAILURE) -> None:
        super().__init__(message)


class Agent:
    """
    Core agent.

    Owns nothing but read-only collaborators: the language model provider,
    the tool whitelist, the enabled adapters, the injection detector and
    the audit logger.
    """

    MAX_ITERATIONS = 10

    def __init__(
        self,
        llm_provider: LLMProvider,
        registry: ToolRegistry,
        adapters: Sequence[BaseAdapter] = (),
        detector: Optional[InjectionDetector] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.llm = llm_provider
        self.registry = registry
        self.adapters = list(adapters)
        self.detector = detector or InjectionDetector()
        self.audit = audit_logger or AuditLogger(enabled=False)

        self._catalog: list[ToolDescriptor] = []
        self._descriptors: dict[str, ToolDescriptor] = {}
        for adapter in self.adapters:
            for descriptor in adapter.list_tool_descriptors():
                self._catalog.append(descriptor)
                self._descriptors[descriptor.name] = descriptor

    @property
    def enabled_providers(self) -> list[str]:
        return [adapter.name for adapter in self.adapters]

    def list_tools(self) -> list[ToolDescriptor]:
        return list(self._catalog)

    def build_system_prompt(self) -> str:
        """Describe the assistant and the providers enabled for this process."""
        parts = [BASE_SYSTEM_PROMPT]
        for adapter in self.adapters:
            parts.append(f"- Manage {adapter.capability}\n")
        for adapter in self.adapters:
            context = adapter.prompt_context()
            if context:
                parts.append(f"\n## {adapter.capability}\n{context}\n")
        parts.append(GUIDELINES)
        return "".join(parts)

    async def process(self, user_id: str, channel: str, text: str) -> str:
        """
        Answer one user message.

        Args:
            user_id: Opaque caller identity
            channel: Channel the message came from
            text: Untrusted user text

        Returns:
            Final reply text

        Raises:
            AgentProcessingError: If the language model could not be reached
                or answered with something unusable
        """
        request_id = str(uuid.uuid4())
        log = logger.bind(request_id=request_id, user=user_id, channel=channel)

        await self.audit.message_received(user_id, channel, request_id, len(text))

        # Detect and log only; sanitizing below is the actual defense.
        if self.detector.detect(text):
            await self.audit.injection_detected(
                user_id, channel, request_id, self.detector.matches(text)
            )

        transcript = [
            Turn.system(self.build_system_prompt()),
            Turn.user(self.detector.sanitize(text)),
        ]

        for round_number in range(1, self.MAX_ITERATIONS + 1):
            try:
                response = await self.llm.chat(transcript, self._catalog)
            except LLMError as e:
                log.error("LLM request failed", round=round_number, error=str(e))
                raise AgentProcessingError() from e

            if not response.choices:
                log.error("LLM returned no choices", round=round_number)
                raise AgentProcessingError()

            message = response.choices[0].message
            if not message.tool_calls:
                log.info("Message processed", rounds=round_number)
                return message.content

            if round_number == self.MAX_ITERATIONS:
                log.warning(
                    "Round limit reached with pending tool calls",
                    rounds=round_number,
                    pending=[call.name for call in message.tool_calls],
                )
                return message.content

            log.info("Processing tool calls", round=round_number, count=len(message.tool_calls))

            results = []
            for call in message.tool_calls:
                results.append(await self._dispatch(call, user_id, channel, request_id))

            transcript.append(Turn.assistant(message.content, message.tool_calls))
            transcript.extend(result.to_turn() for result in results)

        # MAX_ITERATIONS >= 1 always returns inside the loop
        raise AgentProcessingError()

    async def _dispatch(
        self,
        call: ToolCallRequest,
        user_id: str,
        channel: str,
        request_id: str,
    ) -> ToolCallResult:
        """Validate and execute one tool call. Never raises for tool failures."""
        arguments: dict[str, Any] = {}
        try:
            arguments = _parse_arguments(call.raw_arguments)
        except ValueError as e:
            result = _failure(call, f"failed to parse arguments: {e}")
        else:
            result = await self._execute(call, arguments)

        await self.audit.tool_dispatched(
            user_id, channel, request_id,
            tool_name=call.name if self.registry.is_allowed(call.name) else "[unregistered]",
            parameters=arguments,
            status="success" if result.succeeded else "error",
        )
        return result

    async def _execute(self, call: ToolCallRequest, arguments: dict[str, Any]) -> ToolCallResult:
        outcome = self.registry.validate(call.name)
        if not outcome.allowed:
            logger.warning("Tool not in whitelist", tool=call.name)
            return ToolCallResult(for_request_id=call.id, output_text=NOT_PERMITTED, succeeded=False)

        descriptor = self._descriptors.get(call.name)
        if descriptor is not None:
            checked = self.registry.validate_arguments(descriptor, arguments)
            if not checked.allowed:
                return _failure(call, f"invalid arguments: {checked.reason}")

        for adapter in self.adapters:
            adapter_outcome = await adapter.execute(call.name, arguments)
            if isinstance(adapter_outcome, NotMine):
                continue
            if isinstance(adapter_outcome, HandledError):
                return _failure(call, adapter_outcome.message)
            if isinstance(adapter_outcome, Handled):
                return ToolCallResult(for_request_id=call.id, output_text=adapter_outcome.output)

        return _failure(call, f"unknown tool: {call.name}")


def _parse_arguments(raw_arguments: str) -> dict[str, Any]:
    if not raw_arguments.strip():
        return {}
    value = json.loads(raw_arguments)
    if not isinstance(value, dict):
        raise ValueError("arguments must be a JSON object")
    return value


def _failure(call: ToolCallRequest, message: str) -> ToolCallResult:
    return ToolCallResult(
        for_request_id=call.id,
        output_text=f"Error executing tool: {message}",
        succeeded=False,
    )
