"""
Conversation message and tool-call record types.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ROLES = ("system", "user", "assistant", "tool", "error")


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCallRecord:
    """A tool call requested by the model.

    ``index`` is only used while merging stream deltas and is dropped
    when the record is normalized.
    """
    id: str = ""
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)
    index: Optional[int] = None

    def is_complete(self) -> bool:
        return bool(self.id and self.type and self.function.name and self.function.arguments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCallRecord":
        fn = data.get("function") or {}
        if not isinstance(fn, dict):
            fn = {}
        index = data.get("index")
        return cls(
            id=data.get("id") or "",
            type=data.get("type") or "",
            function=FunctionCall(
                name=fn.get("name") or "",
                arguments=fn.get("arguments") or "",
            ),
            index=index if isinstance(index, int) else None,
        )


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class ConversationMessage:
    """One entry of the conversation transcript"""
    role: str
    content: str = ""
    reasoning: str = ""
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    model: str = ""
    finish_reason: Optional[str] = None
    is_streaming: bool = False
    id: str = field(default_factory=_new_id)
    timestamp: float = field(default_factory=time.time)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_api(self) -> Dict[str, Any]:
        """Render as an OpenAI chat message."""
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.role == "tool":
            msg["tool_call_id"] = self.tool_call_id or ""
            if self.name:
                msg["name"] = self.name
        return msg

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_api()
        data.update({
            "id": self.id,
            "reasoning": self.reasoning,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "timestamp": self.timestamp,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content") or "",
            reasoning=data.get("reasoning") or "",
            tool_calls=[ToolCallRecord.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            model=data.get("model") or "",
            finish_reason=data.get("finish_reason"),
            id=data.get("id") or _new_id(),
            timestamp=data.get("timestamp") or time.time(),
        )


def tool_message(tool_call_id: str, name: str, content: str) -> ConversationMessage:
    return ConversationMessage(role="tool", content=content, tool_call_id=tool_call_id, name=name)


def error_message(content: str) -> ConversationMessage:
    return ConversationMessage(role="error", content=content)
