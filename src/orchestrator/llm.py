"""Language model gateway.

Presents one request/response contract over two backend wire formats:
- OpenAI-compatible ``/v1/chat/completions`` (LM Studio, LocalAI, vLLM,
  OpenRouter, OpenAI)
- Ollama native ``/api/chat``

The gateway never retries. A failed call fails the round; retry policy
belongs to the caller.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Optional, Union

import httpx

from shared.config import LLMSettings
from shared.logging import get_logger
from shared.models import (
    AssistantMessage,
    ChatResponse,
    Choice,
    ToolCallRequest,
    ToolDescriptor,
    Turn,
    Usage,
)

logger = get_logger(__name__)

OLLAMA_DEFAULT_URLS = frozenset({
    "http://localhost:11434",
    "http://127.0.0.1:11434",
    "http://host.docker.internal:11434",
})

OPENAI_COMPATIBLE_PROVIDERS = frozenset({
    "ollama", "lmstudio", "localai", "vllm", "openrouter", "openai",
})


class LLMError(Exception):
    """Base error for language model gateway failures."""
    pass


class LLMStatusError(LLMError):
    """The backend answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"API error (status {status_code}): {body}")


class LLMDecodeError(LLMError):
    """The backend answered with a body that is not a chat response."""
    pass


class LLMConnectionError(LLMError):
    """The backend could not be reached."""
    pass


class LLMTimeoutError(LLMError):
    """The whole call exceeded the configured timeout."""
    pass


def is_ollama_url(url: str) -> bool:
    """True for the well-known default addresses of a local Ollama server."""
    return url.rstrip("/") in OLLAMA_DEFAULT_URLS


class LLMProvider(ABC):
    """
    Abstract base class for language model backends.

    The model receives only the transcript and the tool catalog; it never
    calls tools or external APIs itself.
    """

    @abstractmethod
    async def chat(
        self,
        transcript: list[Turn],
        tools: Optional[list[ToolDescriptor]] = None
    ) -> ChatResponse:
        """
        Request one completion.

        Args:
            transcript: Conversation so far
            tools: Tool catalog offered to the model

        Returns:
            Normalized response with one or more choices

        Raises:
            LLMError: On transport, status or decode failure
        """
        pass

    async def list_models(self) -> list[str]:
        return []

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class HTTPChatProvider(LLMProvider):
    """Shared HTTP plumbing for the concrete wire formats."""

    endpoint_path = ""
    models_path = ""

    def __init__(
        self,
        settings: LLMSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.settings.api_key:
                headers["Authorization"] = f"Bearer {self.settings.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.settings.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        transcript: list[Turn],
        tools: Optional[list[ToolDescriptor]] = None
    ) -> ChatResponse:
        payload = self._build_payload(transcript, tools or [])
        data = await self._post(self.endpoint_path, payload)
        try:
            response = self._parse_response(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LLMDecodeError(f"failed to decode response: {e}") from e

        logger.debug(
            "LLM response received",
            model=response.model,
            choices=len(response.choices),
            tool_calls=sum(len(c.message.tool_calls) for c in response.choices),
        )
        return response

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await asyncio.wait_for(
                self._get_client().post(path, json=payload),
                timeout=self.settings.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise LLMTimeoutError(
                f"request timed out after {self.settings.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise LLMConnectionError(f"request failed: {e}") from e

        if response.status_code != 200:
            raise LLMStatusError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise LLMDecodeError(f"failed to decode response: {e}") from e

        if not isinstance(data, dict):
            raise LLMDecodeError("failed to decode response: expected a JSON object")
        return data

    async def list_models(self) -> list[str]:
        try:
            response = await self._get_client().get(self.models_path)
            response.raise_for_status()
            return self._parse_models(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(f"failed to list models: {e}") from e

    async def ping(self) -> bool:
        try:
            response = await self._get_client().get(self.models_path)
        except httpx.HTTPError as e:
            logger.warning("LLM backend unreachable", base_url=self.base_url, error=str(e))
            return False
        return response.status_code < 500

    @abstractmethod
    def _build_payload(
        self, transcript: list[Turn], tools: list[ToolDescriptor]
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        pass

    @abstractmethod
    def _parse_models(self, data: dict[str, Any]) -> list[str]:
        pass


class OpenAICompatibleProvider(HTTPChatProvider):
    """Backend speaking the OpenAI chat-completions format."""

    endpoint_path = "/v1/chat/completions"
    models_path = "/v1/models"

    def _encode_turn(self, turn: Turn) -> dict[str, Any]:
        message: dict[str, Any] = {"role": turn.role.value, "content": turn.content}
        if turn.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": call.raw_arguments or "{}",
                    },
                }
                for call in turn.tool_calls
            ]
        if turn.tool_call_id:
            message["tool_call_id"] = turn.tool_call_id
        return message

    def _build_payload(
        self, transcript: list[Turn], tools: list[ToolDescriptor]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [self._encode_turn(t) for t in transcript],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        if tools:
            payload["tools"] = [t.to_llm_tool() for t in tools]
        return payload

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        choices = []
        for position, raw in enumerate(data.get("choices") or []):
            message = raw.get("message") or {}
            raw_calls = message.get("tool_calls") or raw.get("tool_calls") or []
            choices.append(Choice(
                index=raw.get("index", position),
                message=AssistantMessage(
                    content=message.get("content") or "",
                    tool_calls=_parse_tool_calls(raw_calls),
                ),
                finish_reason=raw.get("finish_reason") or "stop",
            ))

        usage = data.get("usage") or {}
        return ChatResponse(
            id=data.get("id") or "",
            model=data.get("model") or self.settings.model,
            choices=choices,
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )

    def _parse_models(self, data: dict[str, Any]) -> list[str]:
        return [m["id"] for m in data.get("data", [])]


class OllamaProvider(HTTPChatProvider):
    """Backend speaking Ollama's native ``/api/chat`` format."""

    endpoint_path = "/api/chat"
    models_path = "/api/tags"

    def _encode_turn(self, turn: Turn) -> dict[str, Any]:
        message: dict[str, Any] = {"role": turn.role.value, "content": turn.content}
        if turn.tool_calls:
            # Ollama expects argument objects, not JSON text
            message["tool_calls"] = [
                {"function": {"name": call.name, "arguments": _arguments_object(call.raw_arguments)}}
                for call in turn.tool_calls
            ]
        return message

    def _build_payload(
        self, transcript: list[Turn], tools: list[ToolDescriptor]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [self._encode_turn(t) for t in transcript],
            "stream": False,
            "options": {
                "temperature": self.settings.temperature,
                "num_predict": self.settings.max_tokens,
            },
        }
        if tools:
            payload["tools"] = [t.to_llm_tool() for t in tools]
        return payload

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        message = data.get("message")
        if not isinstance(message, dict):
            raise ValueError("response has no message")

        prompt_tokens = data.get("prompt_eval_count") or 0
        completion_tokens = data.get("eval_count") or 0
        return ChatResponse(
            model=data.get("model") or self.settings.model,
            choices=[
                Choice(
                    index=0,
                    message=AssistantMessage(
                        content=message.get("content") or "",
                        tool_calls=_parse_tool_calls(message.get("tool_calls") or []),
                    ),
                    finish_reason=data.get("done_reason") or "stop",
                )
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    def _parse_models(self, data: dict[str, Any]) -> list[str]:
        return [m["name"] for m in data.get("models", [])]


def _parse_tool_calls(raw_calls: list[dict[str, Any]]) -> list[ToolCallRequest]:
    calls = []
    for position, raw in enumerate(raw_calls):
        function = raw.get("function") or {}
        arguments = function.get("arguments", "")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(ToolCallRequest(
            id=raw.get("id") or f"call_{position}",
            name=function["name"],
            raw_arguments=arguments,
        ))
    return calls


def _arguments_object(raw_arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(raw_arguments) if raw_arguments else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def make_response(
    content: str = "",
    tool_calls: Optional[list[ToolCallRequest]] = None,
    model: str = "mock"
) -> ChatResponse:
    """Build a single-choice response."""
    return ChatResponse(
        model=model,
        choices=[
            Choice(
                message=AssistantMessage(content=content, tool_calls=tool_calls or []),
                finish_reason="tool_calls" if tool_calls else "stop",
            )
        ],
    )


class MockLLMProvider(LLMProvider):
    """Scripted provider for tests and offline runs."""

    def __init__(self, settings: Optional[LLMSettings] = None) -> None:
        self.settings = settings
        self.call_history: list[dict[str, Any]] = []
        self._queue: deque[Union[ChatResponse, Exception]] = deque()

    def queue(self, *responses: Union[ChatResponse, Exception]) -> None:
        """Queue responses to return, or exceptions to raise, in order."""
        self._queue.extend(responses)

    def set_next_response(self, response: ChatResponse) -> None:
        self._queue.appendleft(response)

    async def chat(
        self,
        transcript: list[Turn],
        tools: Optional[list[ToolDescriptor]] = None
    ) -> ChatResponse:
        self.call_history.append({
            "transcript": list(transcript),
            "tools": list(tools or []),
        })

        if self._queue:
            item = self._queue.popleft()
            if isinstance(item, Exception):
                raise item
            return item

        return make_response("This is a mock response.")

    async def list_models(self) -> list[str]:
        return ["mock"]


def create_llm_provider(
    settings: LLMSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> LLMProvider:
    """
    Factory function to create the appropriate provider.

    The well-known Ollama addresses select the native format; every other
    supported provider name is spoken to in the OpenAI-compatible format.

    Raises:
        ValueError: If provider is not supported
    """
    provider = settings.provider.lower()

    if provider == "mock":
        logger.info("Creating LLM provider", provider="mock")
        return MockLLMProvider(settings)

    if provider not in OPENAI_COMPATIBLE_PROVIDERS:
        raise ValueError(
            f"Unsupported LLM provider: {settings.provider}. "
            f"Supported: {sorted(OPENAI_COMPATIBLE_PROVIDERS | {'mock'})}"
        )

    provider_class: type[HTTPChatProvider]
    if is_ollama_url(settings.base_url):
        provider_class = OllamaProvider
    else:
        provider_class = OpenAICompatibleProvider

    logger.info(
        "Creating LLM provider",
        provider=settings.provider,
        wire_format=provider_class.__name__,
        model=settings.model,
        base_url=settings.base_url,
    )
    return provider_class(settings, transport=transport)
