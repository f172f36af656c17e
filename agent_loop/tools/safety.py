"""Denylist check run before any shell command is spawned.

Matching is a case-sensitive substring test on the raw command text. There is
no shell parsing, so a command reaching the same effect through another
spelling (variables, symlinks, alternate binary paths) is not caught.
"""

from collections.abc import Iterable

from agent_loop.config import DEFAULT_BLOCKED_PATTERNS
from agent_loop.exceptions import ToolBlockedError

BLOCKED_SENTINEL = "Error: Dangerous command blocked"

DANGEROUS_PATTERNS: tuple[str, ...] = tuple(DEFAULT_BLOCKED_PATTERNS)


def matched_pattern(command: str, patterns: Iterable[str] = DANGEROUS_PATTERNS) -> str | None:
    """Return the first blocked pattern contained in *command*, if any."""
    for pattern in patterns:
        if pattern and pattern in command:
            return pattern
    return None


def is_blocked(command: str, patterns: Iterable[str] = DANGEROUS_PATTERNS) -> bool:
    """Return whether *command* contains any blocked pattern."""
    return matched_pattern(command, patterns) is not None


def ensure_allowed(
    command: str,
    patterns: Iterable[str] = DANGEROUS_PATTERNS,
    tool_name: str = "bash",
) -> None:
    """Raise ToolBlockedError when *command* matches a blocked pattern."""
    pattern = matched_pattern(command, patterns)
    if pattern is not None:
        raise ToolBlockedError(tool_name, f"Command matches blocked pattern: {pattern}")
