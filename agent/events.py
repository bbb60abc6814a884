"""
Agent event data types.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional


@dataclass
class AgentEvent:
    """Event emitted while a turn runs"""
    type: str  # start, content, thinking, tool_calls, tool_call, tool_result, end, error, notice, plan_step
    content: str = ""
    data: Optional[Dict[str, Any]] = None


EventCallback = Callable[[AgentEvent], Awaitable[None]]


async def _discard_event(event: AgentEvent) -> None:
    return None
