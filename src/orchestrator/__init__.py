"""Orchestrator.

Drives the agent loop over the language model gateway, and hosts the HTTP
gateway and user-facing channels that call into it.
"""

from orchestrator.agent import Agent, AgentProcessingError
from orchestrator.llm import LLMProvider, create_llm_provider

__all__ = [
    "Agent",
    "AgentProcessingError",
    "LLMProvider",
    "create_llm_provider",
]
