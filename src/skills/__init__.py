"""Tool whitelist, adversarial-input screening and audit trail.

Nothing in this package talks to the network; it is consulted by the
orchestrator before any tool call leaves the process.
"""

from skills.audit import AuditLogger
from skills.injection import REDACTION_MARKER, InjectionDetector
from skills.registry import ToolRegistry

__all__ = [
    "AuditLogger",
    "InjectionDetector",
    "REDACTION_MARKER",
    "ToolRegistry",
]
