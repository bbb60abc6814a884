"""Tool registry: maps tool names to definitions and handlers."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from tools._common import ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Union[ToolResult, Awaitable[ToolResult]]]


class ToolRegistry:
    """
    Named tools with OpenAI function definitions.
    Handlers take keyword arguments and return a ToolResult, sync or async.
    """

    def __init__(self):
        self._definitions: Dict[str, Dict[str, Any]] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, definition: Dict[str, Any], handler: ToolHandler) -> None:
        name = definition["function"]["name"]
        if name in self._handlers:
            logger.warning(f"Replacing tool registration: {name}")
        self._definitions[name] = definition
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._definitions.pop(name, None)
        self._handlers.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._handlers

    @property
    def names(self) -> List[str]:
        return list(self._definitions)

    def definitions(self, allowed: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Definitions for the allowed names, in allow-list order.
        Names without a registered tool are skipped. None means all tools."""
        if allowed is None:
            return list(self._definitions.values())
        result = []
        for name in allowed:
            definition = self._definitions.get(name)
            if definition is None:
                logger.debug(f"Allowed tool not registered: {name}")
                continue
            result.append(definition)
        return result

    async def execute(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        """Execute a tool by name with the given arguments."""
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        try:
            signature = inspect.signature(handler)
        except (TypeError, ValueError):
            signature = None
        if signature is not None:
            try:
                signature.bind(**arguments)
            except TypeError as e:
                return ToolResult.fail(f"Invalid arguments for {name}: {e}")
        try:
            result = handler(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.exception(f"Tool execution error: {name}")
            return ToolResult.fail(f"Tool error: {e}")
        if not isinstance(result, ToolResult):
            return ToolResult.ok("" if result is None else str(result))
        return result
