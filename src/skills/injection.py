"""Prompt-injection screening."""

import re

REDACTION_MARKER = "[FILTERED]"

# Order matters for detect(), which stops at the first hit.
INJECTION_PATTERNS: tuple[str, ...] = (
    # instruction overrides
    r"ignore\s+(?:all\s+)?previous\s+instructions",
    r"disregard\s+all\s+previous(?:\s+instructions)?",
    r"forget\s+everything(?:\s+above)?",
    # persona hijacks
    r"you\s+are\s+now",
    r"act\s+as\s+if\s+you",
    r"pretend\s+to\s+be",
    # fake role markers
    r"\bsystem:",
    r"\bassistant:",
    r"\bhuman:",
    r"\bai:",
    # chat template control tokens
    r"<\|im_start\|>",
    r"<\|im_end\|>",
    r"\[INST\]",
    r"\[/INST\]",
    r"\\n\\nsystem",
)


class InjectionDetector:
    """
    Flags and neutralizes known jailbreak phrasings.

    ``detect`` is used for auditing and ``sanitize`` for safety. They share
    one pattern list and are applied independently of each other.
    """

    def __init__(self, patterns: tuple[str, ...] = INJECTION_PATTERNS) -> None:
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def detect(self, text: str) -> bool:
        return any(p.search(text) for p in self._patterns)

    def matches(self, text: str) -> list[str]:
        """Return the patterns that hit, for audit detail."""
        return [p.pattern for p in self._patterns if p.search(text)]

    def sanitize(self, text: str) -> str:
        """Replace every match of every pattern with the redaction marker."""
        for pattern in self._patterns:
            text = pattern.sub(REDACTION_MARKER, text)
        return text
