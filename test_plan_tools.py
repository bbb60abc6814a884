"""Tests for the tool registry and the plan tools."""

import json

import pytest

from planning_service import PlanningService
from tools import PLAN_TOOL_NAMES, ToolRegistry, ToolResult, register_plan_tools

POINT = {
    "id": "1",
    "short_name": "parser",
    "short_description": "Parse ini files",
    "detailed_description": "Sections, keys and values",
    "review_instructions": "Check edge cases",
    "testing_instructions": "Run the parser tests",
    "expected_inputs": "ini text",
    "expected_outputs": "dict",
    "depends_on": "-1",
}


@pytest.fixture
def tools():
    service = PlanningService()
    registry = ToolRegistry()
    register_plan_tools(registry, service)
    return registry, service


# ============================================================
# Registry
# ============================================================

@pytest.mark.asyncio
async def test_registry_execute_sync_and_async_handlers():
    registry = ToolRegistry()

    async def slow(value: str):
        return ToolResult.ok(value.upper())

    registry.register({"type": "function", "function": {"name": "slow"}}, slow)
    registry.register({"type": "function", "function": {"name": "plain"}}, lambda: "text")

    assert (await registry.execute("slow", {"value": "a"})).content == "A"
    assert (await registry.execute("plain", {})).content == "text"


@pytest.mark.asyncio
async def test_registry_errors():
    registry = ToolRegistry()

    def broken():
        raise RuntimeError("disk gone")

    registry.register({"type": "function", "function": {"name": "broken"}}, broken)
    registry.register({"type": "function", "function": {"name": "strict"}}, lambda path: ToolResult.ok(path))

    assert (await registry.execute("missing", {})).error == "Unknown tool: missing"
    assert (await registry.execute("broken", {})).error == "Tool error: disk gone"
    assert (await registry.execute("strict", {"other": 1})).error.startswith("Invalid arguments for strict")


@pytest.mark.asyncio
async def test_type_error_inside_handler_is_a_tool_error():
    registry = ToolRegistry()

    def buggy(count: int = 0):
        return ToolResult.ok("total " + count)

    registry.register({"type": "function", "function": {"name": "buggy"}}, buggy)

    result = await registry.execute("buggy", {"count": 3})

    assert result.error.startswith("Tool error:")
    assert "Invalid arguments" not in result.error
    assert (await registry.execute("buggy", {"count": 3, "extra": 1})).error.startswith("Invalid arguments for buggy")


@pytest.mark.asyncio
async def test_plan_tools_check_arguments_against_the_handler(tools):
    registry, _ = tools

    missing = await registry.execute("plan_point_implemented", {"comment": "no id"})

    assert missing.error.startswith("Invalid arguments for plan_point_implemented")
    assert "point_id" in missing.error


def test_definitions_follow_allow_list(tools):
    registry, _ = tools

    names = [d["function"]["name"] for d in registry.definitions(["plan_show", "unknown", "plan_new"])]

    assert names == ["plan_show", "plan_new"]
    assert len(registry.definitions()) == len(PLAN_TOOL_NAMES) == 24
    assert registry.definitions([]) == []


# ============================================================
# Plan tools
# ============================================================

@pytest.mark.asyncio
async def test_plan_lifecycle_through_tools(tools):
    registry, service = tools

    result = await registry.execute("plan_new", {"name": "Ini parser", "original_request": "parse ini"})
    assert result.success
    plan = service.current_plan
    assert plan.short_description == "Plan created from user request."

    assert (await registry.execute("plan_change", {"short_description": "s", "long_description": "l"})).success
    architecture = {"components": [{"id": "p", "name": "Parser"}], "connections": []}
    assert (await registry.execute("plan_set_architecture", {"architecture": architecture})).success
    assert json.loads(plan.architecture) == architecture

    result = await registry.execute("plan_create_points", {"points": json.dumps([POINT])})
    assert result.content == "Added 1 points: 1"
    assert plan.points[0].depends_on == ["-1"]

    shown = await registry.execute("plan_show", {})
    assert "parser: Parse ini files" in shown.content

    listed = await registry.execute("plan_list", {})
    assert listed.content.startswith(f"* {plan.id}: Ini parser")


@pytest.mark.asyncio
async def test_point_actions(tools):
    registry, service = tools
    service.create_plan("Ini parser", plan_id="ini")
    service.add_points([POINT])

    failed = await registry.execute("plan_point_reviewed", {"point_id": "1"})
    assert not failed.success
    assert "not implemented" in failed.error

    assert (await registry.execute("plan_point_implemented", {"point_id": 1})).success
    assert (await registry.execute("plan_point_reviewed", {"point_id": "1", "comment": "ok"})).success
    assert (await registry.execute("plan_point_tested", {"point_id": "1"})).success

    rework = await registry.execute("plan_point_need_rework", {"point_id": "1", "comment": "off by one"})
    assert rework.content == "Point 1 marked need rework."
    point = service.get_plan("ini").get_point("1")
    assert point.need_rework and point.implemented
    assert not point.reviewed and not point.tested

    assert (await registry.execute("plan_point_comment", {"point_id": "1", "comment": "see issue"})).success
    assert point.comment == "see issue"
    assert [entry.action for entry in service.get_plan("ini").logs][-1] == "comment"


@pytest.mark.asyncio
async def test_needs_work_and_evaluate(tools):
    registry, service = tools
    service.create_plan("Ini parser", plan_id="ini")

    assert not (await registry.execute("plan_need_works", {"comments": []})).success
    assert (await registry.execute("plan_need_works", {"comments": ["vague", "too big"]})).success

    result = await registry.execute("plan_evaluate", {"plan_id": "ini"})
    data = json.loads(result.content)
    assert data["failed_step"] == "description_update_rework"
    assert "vague" in data["next_step_prompt"] and "too big" in data["next_step_prompt"]


@pytest.mark.asyncio
async def test_delete_requires_force_for_open_plans(tools):
    registry, service = tools
    service.create_plan("Ini parser", plan_id="ini")

    refused = await registry.execute("plan_delete", {"plan_id": "ini"})
    assert not refused.success
    assert "force" in refused.error

    assert (await registry.execute("plan_delete", {"plan_id": "ini", "force": True})).success
    assert service.current_plan is None
    assert not (await registry.execute("plan_show", {"plan_id": "ini"})).success


@pytest.mark.asyncio
async def test_missing_plan_and_arguments(tools):
    registry, _ = tools

    assert (await registry.execute("plan_show", {})).error == "No plan id given and no plan is open"
    assert (await registry.execute("plan_open", {"plan_id": "nope"})).error == "Plan with ID 'nope' not found"
    missing = await registry.execute("plan_open", {})
    assert missing.error.startswith("Invalid arguments for plan_open")


# ============================================================
# Point editing
# ============================================================

def three_points(service):
    service.create_plan("Ini parser", plan_id="ini")
    service.add_points([
        dict(POINT, id="1"),
        dict(POINT, id="2", short_name="writer", depends_on=["1"], care_on=["1"]),
        dict(POINT, id="3", short_name="cli", depends_on=["1", "2"], care_on=["2"]),
    ])
    return service.get_plan("ini")


@pytest.mark.asyncio
async def test_change_point_updates_only_given_fields(tools):
    registry, service = tools
    plan = three_points(service)

    result = await registry.execute("plan_change_point", {
        "point_id": "2",
        "short_description": "Write ini files",
        "depends_on": ["-1"],
        "detailed_description": None,
    })

    point = plan.get_point("2")
    assert result.content == "Point 2 updated."
    assert point.short_description == "Write ini files"
    assert point.depends_on == ["-1"]
    assert point.detailed_description == POINT["detailed_description"]
    assert point.short_name == "writer"
    assert plan.logs[-1].action == "changed"

    nothing = await registry.execute("plan_change_point", {"point_id": "2"})
    assert nothing.error.startswith("Nothing to change")
    assert not (await registry.execute("plan_change_point", {"point_id": "9", "short_name": "x"})).success


@pytest.mark.asyncio
async def test_point_remove_drops_references(tools):
    registry, service = tools
    plan = three_points(service)

    result = await registry.execute("plan_point_remove", {"point_ids": ["2"]})

    assert result.success
    assert "2 writer" in result.content
    assert [p.id for p in plan.points] == ["1", "3"]
    assert plan.get_point("3").depends_on == ["1"]
    assert plan.get_point("3").care_on == []

    await registry.execute("plan_point_remove", {"point_ids": "1"})
    assert plan.get_point("3").depends_on == ["-1"]


@pytest.mark.asyncio
async def test_point_remove_unknown_id_removes_nothing(tools):
    registry, service = tools
    plan = three_points(service)

    result = await registry.execute("plan_point_remove", {"point_ids": ["1", "7"]})

    assert result.error == "Points not found in plan 'ini': 7"
    assert len(plan.points) == 3


@pytest.mark.asyncio
async def test_point_depends_on_validates_ids(tools):
    registry, service = tools
    plan = three_points(service)

    result = await registry.execute("plan_point_depends_on", {"point_id": "3", "depends_on": ["2"], "care_on": ["1"]})
    assert "Depends on: 2" in result.content
    assert plan.get_point("3").depends_on == ["2"]
    assert plan.get_point("3").care_on == ["1"]

    unknown = await registry.execute("plan_point_depends_on", {"point_id": "3", "depends_on": ["8"]})
    assert unknown.error == "Depends-on point with ID '8' not found in plan 'ini'"
    itself = await registry.execute("plan_point_depends_on", {"point_id": "3", "depends_on": ["3"]})
    assert "cannot reference itself" in itself.error
    assert plan.get_point("3").depends_on == ["2"]

    await registry.execute("plan_point_depends_on", {"point_id": "3", "depends_on": []})
    assert plan.get_point("3").depends_on == ["-1"]
    assert plan.get_point("3").care_on == ["1"]


@pytest.mark.asyncio
async def test_point_care_on(tools):
    registry, service = tools
    plan = three_points(service)

    result = await registry.execute("plan_point_care_on", {"point_id": "1", "care_on_point_ids": ["2", "3"]})
    assert result.content == "Care-on points set for point 1: 2, 3"
    assert plan.get_point("1").care_on == ["2", "3"]

    assert not (await registry.execute("plan_point_care_on", {"point_id": "1", "care_on_point_ids": ["4"]})).success
    cleared = await registry.execute("plan_point_care_on", {"point_id": "1", "care_on_point_ids": []})
    assert cleared.content == "Care-on points cleared for point 1."


@pytest.mark.asyncio
async def test_point_show_sections(tools):
    registry, service = tools
    three_points(service)
    await registry.execute("plan_point_implemented", {"point_id": "2"})

    everything = await registry.execute("plan_point_show", {"point_id": "2"})
    assert everything.content.startswith("Point 2: writer")
    assert "Testing instructions: Run the parser tests" in everything.content
    assert "State: implemented" in everything.content

    some = await registry.execute("plan_point_show", {"point_id": "2", "sections": ["depends_on", "state"]})
    assert some.content.splitlines() == ["Point 2: writer", "Depends on: 1", "State: implemented"]

    bad = await registry.execute("plan_point_show", {"point_id": "2", "sections": ["colour"]})
    assert bad.error.startswith("Unknown sections: colour")


@pytest.mark.asyncio
async def test_plan_state_and_done(tools):
    registry, service = tools
    three_points(service)
    for action in ("implemented", "reviewed", "tested"):
        await registry.execute(f"plan_point_{action}", {"point_id": "1"})

    state = json.loads((await registry.execute("plan_state", {})).content)
    assert (state["total"], state["implemented"], state["tested"]) == (3, 1, 1)
    assert state["pending"] == ["2", "3"]
    assert state["all_implemented"] is False

    assert "IN PROGRESS" in (await registry.execute("plan_done", {})).content
    service.set_accepted("ship it")
    assert "COMPLETE" in (await registry.execute("plan_done", {})).content
