"""
Tool definitions and implementations for the coding agent.
Each tool has an OpenAI function-calling schema and a handler registered
in a ToolRegistry. The plan tools operate on a PlanningService.
"""

from tools._common import ToolResult  # noqa: F401
from tools.registry import ToolRegistry, ToolHandler  # noqa: F401
from tools.schemas import PLAN_TOOL_DEFINITIONS, PLAN_TOOL_NAMES  # noqa: F401
from tools.plan_tools import PLAN_TOOL_IMPLEMENTATIONS, register_plan_tools  # noqa: F401
