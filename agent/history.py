"""
History windowing and repair.
Builds the message list sent with each request and keeps tool-call /
tool-result pairs consistent.
"""

import logging
from typing import Any, Dict, List

from messages import ConversationMessage

logger = logging.getLogger(__name__)

_MISSING_RESULT = "(result unavailable: the tool call was not executed)"


def repair_tool_sequence(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return a copy where every assistant tool call is followed by its result.

    Tool results without a matching call (e.g. cut off by the window) are
    dropped; calls without a result get a placeholder result.
    """
    repaired: List[Dict[str, Any]] = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        role = msg.get("role")

        if role == "tool":
            logger.warning(f"Dropping orphaned tool result {msg.get('tool_call_id')!r}")
            i += 1
            continue

        repaired.append(msg)
        i += 1
        if role != "assistant" or not msg.get("tool_calls"):
            continue

        expected = [tc.get("id", "") for tc in msg["tool_calls"]]
        seen = set()
        while i < len(messages) and messages[i].get("role") == "tool":
            result = messages[i]
            if result.get("tool_call_id") in expected:
                repaired.append(result)
                seen.add(result.get("tool_call_id"))
            else:
                logger.warning(f"Dropping unmatched tool result {result.get('tool_call_id')!r}")
            i += 1

        missing = [tid for tid in expected if tid not in seen]
        for tid in missing:
            repaired.append({"role": "tool", "tool_call_id": tid, "content": _MISSING_RESULT})
        if missing:
            logger.warning(f"Added {len(missing)} placeholder tool results")

    return repaired


class HistoryMixin:
    """Mixin building request message lists from the transcript.

    Expects the host class to provide:
    - self.messages (list of ConversationMessage) via ContextMixin
    - self.history_window (int)
    """

    def _history_window(self) -> List[ConversationMessage]:
        """The last ``history_window`` sendable messages before the current user message."""
        sendable = [
            m for m in self.messages
            if m.role in ("user", "assistant", "tool") and not m.is_streaming
        ]
        if not sendable:
            return []
        current = sendable[-1]
        earlier = sendable[:-1]
        if self.history_window > 0:
            earlier = earlier[-self.history_window:]
        else:
            earlier = []
        return earlier + [current]

    def _build_messages(self, system_message: str) -> List[Dict[str, Any]]:
        """System message, windowed history and the current user message."""
        body = repair_tool_sequence([m.to_api() for m in self._history_window()])
        messages: List[Dict[str, Any]] = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.extend(body)
        return messages
