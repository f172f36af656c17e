"""Tools package for the agent loop."""

from agent_loop.tools.registry import (
    FunctionTool,
    Tool,
    ToolRegistry,
    ToolResult,
)
from agent_loop.tools.safety import BLOCKED_SENTINEL, DANGEROUS_PATTERNS, is_blocked
from agent_loop.tools.shell import NO_OUTPUT, CommandOutput, ShellTool, run_bash, run_command

__all__ = [
    "BLOCKED_SENTINEL",
    "DANGEROUS_PATTERNS",
    "NO_OUTPUT",
    "CommandOutput",
    "FunctionTool",
    "ShellTool",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "is_blocked",
    "run_bash",
    "run_command",
]
