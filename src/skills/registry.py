"""Tool whitelist.

Only names registered here may ever be dispatched to an adapter. The
registry is created at startup, populated once per enabled provider and
passed explicitly to the agent.
"""

from typing import Any, Iterable

from shared.logging import get_logger
from shared.models import ToolDescriptor, ValidationOutcome
from shared.schema import validate_schema

logger = get_logger(__name__)


class ToolRegistry:
    """
    Whitelist of permitted tool names.

    The allowed set only grows; there is no removal operation.
    """

    def __init__(self) -> None:
        self._allowed: set[str] = set()

    def register(self, names: Iterable[str]) -> None:
        """
        Add tool names to the allowed set.

        Registering a name twice is a no-op.
        """
        added = [name for name in names if name not in self._allowed]
        self._allowed.update(added)
        if added:
            logger.info("Tools registered", count=len(added), total=len(self._allowed))

    def is_allowed(self, name: str) -> bool:
        return name in self._allowed

    def validate(self, name: str) -> ValidationOutcome:
        """Check a tool name against the whitelist."""
        if self.is_allowed(name):
            return ValidationOutcome(allowed=True)
        return ValidationOutcome(allowed=False, reason=f"tool not allowed: {name}")

    def validate_arguments(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any]
    ) -> ValidationOutcome:
        """
        Validate decoded tool arguments against the tool's parameter schema.

        Args:
            descriptor: Tool whose schema applies
            arguments: Decoded argument object

        Returns:
            Outcome whose reason lists every schema violation
        """
        is_valid, errors = validate_schema(arguments, descriptor.parameter_schema)
        if is_valid:
            return ValidationOutcome(allowed=True)
        return ValidationOutcome(allowed=False, reason="; ".join(errors))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._allowed)

    def __contains__(self, name: object) -> bool:
        return name in self._allowed

    def __len__(self) -> int:
        return len(self._allowed)
