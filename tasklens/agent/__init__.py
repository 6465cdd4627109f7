"""Tool dispatch loop."""

from .graph import DispatchLoop
from .state import AgentState, AgentStatus, ExtractionOutcome, ToolResult
from .tools import (
    CREATE_TASK,
    INSPECT_IMAGE,
    SHARE_TASK,
    TOOLS,
    ToolContext,
    execute_tool,
    tool_definitions,
)

__all__ = [
    "CREATE_TASK",
    "INSPECT_IMAGE",
    "SHARE_TASK",
    "TOOLS",
    "AgentState",
    "AgentStatus",
    "DispatchLoop",
    "ExtractionOutcome",
    "ToolContext",
    "ToolResult",
    "execute_tool",
    "tool_definitions",
]
