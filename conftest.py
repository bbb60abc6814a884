"""Shared fixtures: a scripted chat service and a wired agent."""

import copy
from typing import Any, Dict, List, Optional

import pytest

from agent import CodingAgent, ModeConfig, ModeEngine
from llm_service import ChatRequest, LLMAbortedError, StreamChunk, ToolCallDelta
from messages import ConversationMessage, FunctionCall, ToolCallRecord
from planning_service import PlanningService
from tools import ToolRegistry, ToolResult, register_plan_tools


def assistant(content: str = "", tool_calls: Optional[List[ToolCallRecord]] = None) -> ConversationMessage:
    return ConversationMessage(role="assistant", content=content, tool_calls=list(tool_calls or []))


def call(call_id: str, name: str, arguments: str = "{}") -> ToolCallRecord:
    return ToolCallRecord(id=call_id, type="function", function=FunctionCall(name=name, arguments=arguments))


def text_chunks(*parts: str) -> List[StreamChunk]:
    return [StreamChunk(content=p) for p in parts] + [StreamChunk(finish_reason="stop")]


def tool_chunks(call_id: str, name: str, *fragments: str) -> List[StreamChunk]:
    chunks = [StreamChunk(tool_calls=[ToolCallDelta(index=0, id=call_id, type="function", function_name=name)])]
    chunks += [StreamChunk(tool_calls=[ToolCallDelta(index=0, function_arguments=f)]) for f in fragments]
    chunks.append(StreamChunk(finish_reason="tool_calls"))
    return chunks


class FakeService:
    """
    Stands in for LLMService. ``responses`` feeds generate_response and
    ``streams`` feeds generate_response_stream, in order. An Exception entry
    is raised instead of returned. Every request payload is recorded.
    """

    def __init__(self, responses=None, streams=None):
        self.responses: List[Any] = list(responses or [])
        self.streams: List[Any] = list(streams or [])
        self.requests: List[Dict[str, Any]] = []
        self.on_request = None
        self.models = ["model-a", "model-b"]

    def _record(self, request: ChatRequest) -> None:
        self.requests.append(copy.deepcopy(request.to_payload()))
        if self.on_request is not None:
            self.on_request(request)

    async def generate_response(self, request: ChatRequest, abort=None) -> ConversationMessage:
        self._record(request)
        if abort is not None and abort.is_set():
            raise LLMAbortedError("Request aborted")
        if not self.responses:
            return assistant("done")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return copy.deepcopy(item)

    async def generate_response_stream(self, request: ChatRequest, abort=None):
        self._record(request)
        item = self.streams.pop(0) if self.streams else text_chunks("done")
        if isinstance(item, Exception):
            raise item
        for chunk in item:
            if isinstance(chunk, Exception):
                raise chunk
            if abort is not None and abort.is_set():
                raise LLMAbortedError("Request aborted")
            yield chunk

    async def list_models(self) -> List[str]:
        return list(self.models)

    async def close(self) -> None:
        return None


TEST_MODES = {
    "Coder": ModeConfig(name="Coder", system_message="You code.", allowed_tools=["echo", "fail", "plan_show"]),
    "Ask": ModeConfig(name="Ask", system_message="You answer.", allowed_tools=[]),
    "Architect": ModeConfig(name="Architect", system_message="You plan.", allowed_tools=["plan_change"]),
    "Reviewer": ModeConfig(name="Reviewer", system_message="You review.", allowed_tools=["plan_reviewed"]),
    "Orchestrator": ModeConfig(name="Orchestrator", algorithm="orchestrator"),
}


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.executed = []

    def echo(text: str = "", **kw):
        registry.executed.append(("echo", text))
        return ToolResult.ok(f"echo: {text}")

    def fail(**kw):
        registry.executed.append(("fail", None))
        return ToolResult.fail("boom")

    registry.register(
        {"type": "function", "function": {"name": "echo", "description": "Echo", "parameters": {"type": "object", "properties": {"text": {"type": "string"}}}}},
        echo,
    )
    registry.register(
        {"type": "function", "function": {"name": "fail", "description": "Fail", "parameters": {"type": "object", "properties": {}}}},
        fail,
    )
    return registry


@pytest.fixture
def planner():
    return PlanningService()


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def make_agent(registry, planner, service):
    def factory(**kwargs) -> CodingAgent:
        register_plan_tools(registry, planner)
        options = {
            "service": service,
            "tools": registry,
            "modes": ModeEngine(dict(TEST_MODES), "Coder"),
            "planner": planner,
            "model": "test-model",
            "max_iterations": 10,
            "history_window": 10,
            "streaming": False,
            "plan_followups": False,
            "plan_implementation": False,
        }
        options.update(kwargs)
        return CodingAgent(**options)
    return factory
