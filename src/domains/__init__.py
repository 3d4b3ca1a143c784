"""Tool provider domains.

Each domain contains:
- A REST client for its service
- Typed argument models and tool descriptors
- An adapter routing tool calls to the client

Domains are isolated: no cross-domain calls and no shared state.
"""

from typing import TYPE_CHECKING, Optional

import httpx

from shared.logging import get_logger

if TYPE_CHECKING:
    from domains.base import BaseAdapter
    from shared.config import Settings
    from skills.registry import ToolRegistry

logger = get_logger(__name__)


def load_enabled_domains(
    settings: "Settings",
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> list["BaseAdapter"]:
    """
    Build adapters for every provider enabled in configuration.

    Called once at startup. Order is stable and decides routing priority.
    """
    from domains.devops import create_devops_adapter
    from domains.trello import create_trello_adapter

    adapters: list["BaseAdapter"] = []
    if settings.azure_devops.enabled:
        adapters.append(create_devops_adapter(settings.azure_devops, transport=transport))
    if settings.trello.enabled:
        adapters.append(create_trello_adapter(settings.trello, transport=transport))

    logger.info("Domains loaded", domains=[a.name for a in adapters])
    return adapters


def register_domains(registry: "ToolRegistry", adapters: list["BaseAdapter"]) -> None:
    """Whitelist the tools of every adapter."""
    for adapter in adapters:
        registry.register(adapter.tool_names())


__all__ = ["load_enabled_domains", "register_domains"]
