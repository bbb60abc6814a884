"""
Stream delta merging.

Rebuilds one assistant message from the StreamChunk sequence of a streamed
completion. Tool-call arguments arrive as string fragments keyed by position
index and are concatenated in arrival order.
"""

import logging
from typing import Any, Iterable, List, Optional, Union

from llm_service import StreamChunk, ToolCallDelta
from messages import ConversationMessage, FunctionCall, ToolCallRecord

logger = logging.getLogger(__name__)


def _find_by_index(tool_calls: List[ToolCallRecord], index: int) -> Optional[ToolCallRecord]:
    for record in tool_calls:
        if record.index == index:
            return record
    return None


def _merge_tool_delta(tool_calls: List[ToolCallRecord], delta: ToolCallDelta) -> None:
    if delta.index is None:
        tool_calls.append(ToolCallRecord(
            id=delta.id or "",
            type=delta.type or "",
            function=FunctionCall(
                name=delta.function_name or "",
                arguments=delta.function_arguments or "",
            ),
        ))
        return

    record = _find_by_index(tool_calls, delta.index)
    if record is None:
        record = ToolCallRecord(index=delta.index)
        tool_calls.append(record)

    if delta.id:
        record.id = delta.id
    if delta.type:
        record.type = delta.type
    if delta.function_name:
        record.function.name = delta.function_name
    if delta.function_arguments:
        record.function.arguments += delta.function_arguments


def merge_chunk(chunk: StreamChunk, message: ConversationMessage) -> ConversationMessage:
    """Fold one chunk into the streaming message in place and return it."""
    if chunk.content:
        message.content += chunk.content
    if chunk.reasoning:
        message.reasoning += chunk.reasoning
    for delta in chunk.tool_calls:
        _merge_tool_delta(message.tool_calls, delta)
    if chunk.finish_reason:
        message.finish_reason = chunk.finish_reason
    return message


def normalize_tool_calls(
    tool_calls: Iterable[Union[ToolCallRecord, Any]],
) -> List[ToolCallRecord]:
    """
    Keep only complete tool calls, as fresh records without the merge index.
    Accepts records or OpenAI-shaped dicts. Normalizing twice is a no-op.
    """
    normalized = []
    for tc in tool_calls or []:
        if isinstance(tc, dict):
            tc = ToolCallRecord.from_dict(tc)
        if not isinstance(tc, ToolCallRecord):
            logger.warning(f"Dropping unrecognized tool call: {tc!r}")
            continue
        if not tc.is_complete():
            logger.warning(
                f"Dropping incomplete tool call (id={tc.id!r}, name={tc.function.name!r})"
            )
            continue
        normalized.append(ToolCallRecord(
            id=tc.id,
            type=tc.type,
            function=FunctionCall(name=tc.function.name, arguments=tc.function.arguments),
        ))
    return normalized


def finalize_message(message: ConversationMessage) -> ConversationMessage:
    """Close a streaming message: normalized tool calls, no index fields."""
    message.is_streaming = False
    message.tool_calls = normalize_tool_calls(message.tool_calls)
    return message


def merge_stream(chunks: Iterable[StreamChunk], message: Optional[ConversationMessage] = None) -> ConversationMessage:
    """Merge a complete chunk sequence into a finalized message."""
    message = message or ConversationMessage(role="assistant", is_streaming=True)
    for chunk in chunks:
        merge_chunk(chunk, message)
    return finalize_message(message)
