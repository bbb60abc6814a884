"""Tests for the tool-call loop."""

import pytest

from conftest import assistant, call
from llm_service import LLMError
from tools import ToolResult


@pytest.mark.asyncio
async def test_loop_stops_at_iteration_cap(make_agent, service, registry):
    # Every response asks for one more tool call
    service.responses = [assistant(tool_calls=[call(f"c{i}", "echo", f'{{"text": "{i}"}}')]) for i in range(12)]
    agent = make_agent()

    produced = await agent.process_turn("loop forever")

    assert len(registry.executed) == 10
    assert len(service.requests) == 11
    assert produced[-1].role == "error"
    assert "stopped after 10 iterations" in produced[-1].content
    tool_results = [m for m in produced if m.role == "tool"]
    assert len(tool_results) == 10


@pytest.mark.asyncio
async def test_bad_arguments_become_a_tool_result_and_loop_continues(make_agent, service, registry):
    service.responses = [
        assistant(tool_calls=[call("c1", "echo", "{bad json")]),
        assistant("recovered"),
    ]
    agent = make_agent()

    produced = await agent.process_turn("go")

    assert [m.role for m in produced] == ["assistant", "tool", "assistant"]
    assert "Error parsing tool arguments" in produced[1].content
    assert produced[1].tool_call_id == "c1"
    assert registry.executed == []
    assert len(service.requests) == 2
    assert produced[-1].content == "recovered"


@pytest.mark.asyncio
async def test_follow_up_request_carries_call_and_result(make_agent, service):
    service.responses = [
        assistant(tool_calls=[call("c1", "echo", '{"text": "hi"}')]),
        assistant("done"),
    ]
    agent = make_agent()

    await agent.process_turn("say hi")

    follow_up = service.requests[1]["messages"]
    assert follow_up[-2]["role"] == "assistant"
    assert follow_up[-2]["tool_calls"][0]["id"] == "c1"
    assert follow_up[-1] == {"role": "tool", "content": "echo: hi", "tool_call_id": "c1", "name": "echo"}
    assert service.requests[1]["tools"] == service.requests[0]["tools"]


@pytest.mark.asyncio
async def test_tool_failure_is_reported_as_error_text(make_agent, service):
    service.responses = [
        assistant(tool_calls=[call("c1", "fail"), call("c2", "nope")]),
        assistant("ok"),
    ]
    agent = make_agent()

    produced = await agent.process_turn("try")

    results = [m for m in produced if m.role == "tool"]
    assert results[0].content == "Error: boom"
    assert results[1].content == "Error: Unknown tool: nope"


@pytest.mark.asyncio
async def test_tools_run_sequentially_in_order(make_agent, service, registry):
    service.responses = [
        assistant(tool_calls=[call("c1", "echo", '{"text": "1"}'), call("c2", "echo", '{"text": "2"}')]),
        assistant("done"),
    ]
    agent = make_agent()

    await agent.process_turn("two")

    assert registry.executed == [("echo", "1"), ("echo", "2")]


@pytest.mark.asyncio
async def test_interrupt_skips_remaining_tools_and_follow_up(make_agent, service, registry):
    agent = make_agent()

    def stop(**kw):
        registry.executed.append(("stop", None))
        agent.interrupt()
        return ToolResult.ok("stopping")

    registry.register({"type": "function", "function": {"name": "stop", "parameters": {"type": "object"}}}, stop)
    service.responses = [assistant(tool_calls=[call("c1", "stop"), call("c2", "echo", '{"text": "late"}')])]

    produced = await agent.process_turn("stop please")

    assert registry.executed == [("stop", None)]
    assert len(service.requests) == 1
    assert [m.role for m in produced] == ["assistant", "tool"]


@pytest.mark.asyncio
async def test_interrupt_during_follow_up_drops_its_response(make_agent, service, registry):
    service.responses = [
        assistant(tool_calls=[call("c1", "echo", '{"text": "1"}')]),
        assistant("late", tool_calls=[call("c2", "echo", '{"text": "2"}')]),
    ]
    agent = make_agent()

    def interrupt_on_follow_up(request):
        if len(service.requests) == 2:
            agent.interrupt()

    service.on_request = interrupt_on_follow_up

    produced = await agent.process_turn("go")

    assert len(service.requests) == 2
    assert registry.executed == [("echo", "1")]
    assert [m.role for m in produced] == ["assistant", "tool"]
    assert all(m.content != "late" for m in agent.messages)
    assert agent.interrupted is True


@pytest.mark.asyncio
async def test_follow_up_transport_error_ends_loop(make_agent, service):
    service.responses = [
        assistant(tool_calls=[call("c1", "echo", "{}")]),
        LLMError("HTTP 500: upstream"),
    ]
    events = []

    async def on_event(event):
        events.append(event)

    agent = make_agent()
    produced = await agent.process_turn("go", on_event=on_event)

    assert produced[-1].role == "error"
    assert produced[-1].content == "Error in follow-up response (iteration 1): HTTP 500: upstream"
    assert any(e.type == "error" for e in events)


@pytest.mark.asyncio
async def test_tool_events_are_emitted(make_agent, service):
    service.responses = [assistant(tool_calls=[call("c1", "echo", '{"text": "x"}')]), assistant("fin")]
    events = []

    async def on_event(event):
        events.append(event)

    agent = make_agent()
    await agent.process_turn("go", on_event=on_event)

    tool_events = [(e.type, e.content) for e in events if e.type in ("tool_call", "tool_result")]
    assert tool_events == [("tool_call", "echo"), ("tool_result", "echo: x")]
    result_event = next(e for e in events if e.type == "tool_result")
    assert result_event.data["success"] is True
