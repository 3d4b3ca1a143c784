"""Audit trail for the agent.

Records message receipt, every tool dispatch and every injection detection.
Entries always go to the structured log; when enabled they are also
buffered to a JSON-lines file.
"""

import asyncio
import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, AuditEventType

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for agent activity.

    Every entry carries:
    - User identity and channel
    - Request id of the enclosing ``process`` call
    - Tool name and parameters (with sensitive data redaction)
    """

    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential", "pat"}

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = False,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

    def _redact_sensitive(self, params: dict[str, Any]) -> dict[str, Any]:
        redacted = {}
        for key, value in params.items():
            if key.lower() in self.SENSITIVE_PARAMS:
                redacted[key] = "[REDACTED]"
            elif isinstance(value, dict):
                redacted[key] = self._redact_sensitive(value)
            else:
                redacted[key] = value
        return redacted

    def create_entry(
        self,
        event: AuditEventType,
        user_id: str,
        channel: str,
        request_id: str,
        tool_name: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
        status: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.utcnow(),
            event=event,
            user_id=user_id,
            channel=channel,
            request_id=request_id,
            tool_name=tool_name,
            parameters=self._redact_sensitive(parameters or {}),
            status=status,
            detail=detail,
        )

    async def message_received(
        self, user_id: str, channel: str, request_id: str, length: int
    ) -> AuditEntry:
        entry = self.create_entry(
            AuditEventType.MESSAGE_RECEIVED, user_id, channel, request_id,
            detail=f"length={length}",
        )
        logger.info(
            "Message received",
            audit_id=entry.id,
            user=user_id,
            channel=channel,
            request_id=request_id,
            length=length,
        )
        await self._record(entry)
        return entry

    async def injection_detected(
        self, user_id: str, channel: str, request_id: str, patterns: list[str]
    ) -> AuditEntry:
        entry = self.create_entry(
            AuditEventType.INJECTION_DETECTED, user_id, channel, request_id,
            detail=", ".join(patterns),
        )
        logger.warning(
            "Potential prompt injection detected",
            audit_id=entry.id,
            user=user_id,
            channel=channel,
            request_id=request_id,
            patterns=patterns,
        )
        await self._record(entry)
        return entry

    async def tool_dispatched(
        self,
        user_id: str,
        channel: str,
        request_id: str,
        tool_name: str,
        parameters: dict[str, Any],
        status: str,
    ) -> AuditEntry:
        entry = self.create_entry(
            AuditEventType.TOOL_DISPATCHED, user_id, channel, request_id,
            tool_name=tool_name, parameters=parameters, status=status,
        )
        logger.info(
            "Tool dispatched",
            audit_id=entry.id,
            user=user_id,
            channel=channel,
            request_id=request_id,
            tool=tool_name,
            status=status,
        )
        await self._record(entry)
        return entry

    async def _record(self, entry: AuditEntry) -> None:
        if not self.enabled:
            return

        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e))
            # kept for the next flush
            self._buffer.extend(entries_to_write)

    async def flush(self) -> None:
        async with self._lock:
            await self._flush()

    async def query(
        self,
        user_id: Optional[str] = None,
        channel: Optional[str] = None,
        event: Optional[AuditEventType] = None,
        tool_name: Optional[str] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """
        Query the audit file with filters.

        Args:
            user_id: Filter by user ID
            channel: Filter by channel
            event: Filter by event type
            tool_name: Filter by tool name
            limit: Maximum entries to return
        """
        results: list[AuditEntry] = []

        if not self.log_path.exists():
            return results

        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                if len(results) >= limit:
                    break

                try:
                    entry = AuditEntry(**json.loads(line.strip()))
                except ValueError:
                    continue

                if user_id and entry.user_id != user_id:
                    continue
                if channel and entry.channel != channel:
                    continue
                if event and entry.event != event:
                    continue
                if tool_name and entry.tool_name != tool_name:
                    continue

                results.append(entry)

        return results
