"""Base classes for tool provider adapters.

All adapters must:
- Expose a declarative tool catalog
- Validate arguments into a typed model before touching the backend
- Return a tagged outcome instead of raising for tool-level failures
- Never call another adapter or the language model
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.logging import get_logger
from shared.models import (
    AdapterOutcome,
    Handled,
    HandledError,
    NotMine,
    ToolDescriptor,
)
from shared.schema import tool_schema

logger = get_logger(__name__)

ToolHandler = Callable[[Any], Awaitable[str]]


class ToolExecutionError(Exception):
    """A tool ran but could not produce a result."""
    pass


class ProviderAPIError(ToolExecutionError):
    """The provider's REST API rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RegisteredTool:
    """A tool descriptor bound to its argument model and handler."""

    def __init__(
        self,
        descriptor: ToolDescriptor,
        args_model: type[BaseModel],
        handler: ToolHandler
    ) -> None:
        self.descriptor = descriptor
        self.args_model = args_model
        self.handler = handler


class BaseAdapter(ABC):
    """
    Base class for tool provider adapters.

    Each adapter:
    - Handles one external service only
    - Owns the tools whose names it registered
    - Answers ``NotMine`` for every other name
    """

    name: str = ""
    capability: str = ""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._define_tools()

    @abstractmethod
    def _define_tools(self) -> None:
        """Register every tool of this provider."""
        pass

    def _register_tool(
        self,
        name: str,
        description: str,
        args_model: type[BaseModel],
        handler: ToolHandler
    ) -> None:
        descriptor = ToolDescriptor(
            name=name,
            description=description,
            parameter_schema=tool_schema(args_model),
        )
        self._tools[name] = RegisteredTool(descriptor, args_model, handler)

    def list_tool_descriptors(self) -> list[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_descriptor(self, name: str) -> Optional[ToolDescriptor]:
        tool = self._tools.get(name)
        return tool.descriptor if tool else None

    def prompt_context(self) -> str:
        """Extra facts for the system prompt, such as the configured project."""
        return ""

    async def execute(self, name: str, arguments: dict[str, Any]) -> AdapterOutcome:
        """
        Execute a tool if this adapter owns it.

        Args:
            name: Tool name requested by the model
            arguments: Decoded argument object

        Returns:
            NotMine for foreign tools, otherwise Handled or HandledError
        """
        tool = self._tools.get(name)
        if tool is None:
            return NotMine()

        try:
            args = tool.args_model.model_validate(arguments)
        except ValidationError as e:
            return HandledError(message=f"invalid arguments: {_summarize(e)}")

        logger.debug("Executing tool", adapter=self.name, tool=name)

        try:
            output = await tool.handler(args)
        except ToolExecutionError as e:
            logger.warning("Tool execution failed", adapter=self.name, tool=name, error=str(e))
            return HandledError(message=str(e))
        except Exception as e:
            # CancelledError is a BaseException and still propagates
            logger.error(
                "Tool raised unexpectedly",
                adapter=self.name,
                tool=name,
                error=str(e),
                exc_info=True,
            )
            return HandledError(message=f"unexpected {type(e).__name__}: {e}")

        return Handled(output=output)

    async def close(self) -> None:
        pass


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


class RESTClient:
    """
    Thin async HTTP client for provider REST APIs.

    Idempotent GETs are retried on transport errors; other methods are sent
    once. Every failure surfaces as ``ProviderAPIError``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        auth: Optional[httpx.Auth | tuple[str, str]] = None,
        params: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._auth = auth
        self._params = params or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                auth=self._auth,
                params=self._params,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True
    )
    async def _send_idempotent(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._get_client().request("GET", url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            ProviderAPIError: On transport failure or a status of 400 and above
        """
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = params
        if json is not None:
            kwargs["json"] = json
        if content_type:
            kwargs["headers"] = {"Content-Type": content_type}

        try:
            if method.upper() == "GET":
                response = await self._send_idempotent(url, **kwargs)
            else:
                response = await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderAPIError(f"request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderAPIError(
                f"API error (status {response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(f"failed to decode response: {e}") from e

    async def get(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", url, json=json, **kwargs)

    async def put(self, url: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", url, json=json, **kwargs)

    async def patch(self, url: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", url, json=json, **kwargs)
