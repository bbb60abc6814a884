"""Shared types for the tools package."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    content: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, content: str) -> "ToolResult":
        return cls(success=True, content=content)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)
