"""Tests for plan persistence and the planning service."""

import json
import os

import pytest

from agent.plan import Plan, PlanPoint
from planning_service import PlanError, PlanningService, describe_plan
from plans import PlanStore


def test_store_round_trip(tmp_path):
    store = PlanStore(str(tmp_path))
    plan = Plan(id="todo/app", name="Todo", points=[PlanPoint(id="1", depends_on=["-1"])])
    plan.add_log("plan", "created", plan.id, "created")

    path = store.save(plan)
    loaded = store.load("todo/app")

    assert os.path.dirname(path) == str(tmp_path)
    assert not os.path.exists(path + ".tmp")
    assert loaded.to_dict() == plan.to_dict()
    with open(path, encoding="utf-8") as f:
        assert json.load(f)["version"] == 1


def test_store_lists_and_deletes(tmp_path):
    store = PlanStore(str(tmp_path))
    store.save(Plan(id="a", name="A", updated_at="2026-01-01T00:00:00+00:00"))
    store.save(Plan(id="b", name="B", updated_at="2026-02-01T00:00:00+00:00"))
    (tmp_path / "broken.json").write_text("{nope", encoding="utf-8")

    assert [p.id for p in store.list_plans()] == ["b", "a"]
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.load("a") is None


def test_unknown_fields_are_ignored(tmp_path):
    data = Plan(id="x", name="X").to_dict()
    data["from_a_newer_version"] = True
    (tmp_path / "x.json").write_text(json.dumps(data), encoding="utf-8")

    assert PlanStore(str(tmp_path)).load("x").name == "X"


def test_service_persists_and_reloads(tmp_path):
    service = PlanningService(PlanStore(str(tmp_path)))
    plan = service.create_plan("Todo app", short_description="s", long_description="l", plan_id="todo")

    evaluation = service.evaluate("todo")
    evaluation.commit(True)

    reloaded = PlanningService(PlanStore(str(tmp_path)))
    restored = reloaded.get_plan("todo")
    assert restored.descriptions_updated is True
    assert restored.creation_step == "description_review"
    assert restored.logs[0].action == "created"
    assert plan.id == "todo"


def test_service_rejects_duplicates_and_unknown_points():
    service = PlanningService()
    service.create_plan("Todo", plan_id="todo")

    with pytest.raises(PlanError):
        service.create_plan("Again", plan_id="todo")
    with pytest.raises(PlanError):
        service.set_point_state("9", "implemented")
    service.add_points([{"id": "1"}])
    with pytest.raises(PlanError, match="Unknown point action"):
        service.set_point_state("1", "explode")


def test_add_points_replaces_same_id():
    service = PlanningService()
    service.create_plan("Todo", plan_id="todo")
    service.add_points([{"id": "1", "short_name": "first"}, {"id": "2", "short_name": "second"}])
    service.add_points([{"id": "1", "short_name": "renamed", "depends_on": ["2"]}])

    plan = service.get_plan()
    assert [(p.id, p.short_name) for p in plan.points] == [("1", "renamed"), ("2", "second")]
    assert plan.points[0].depends_on == ["2"]


def test_reviewed_only_marks_finished_plans():
    service = PlanningService()
    plan = service.create_plan("Todo", plan_id="todo")

    service.set_reviewed("fine")
    assert plan.reviewed is False

    plan.creation_step = "done"
    service.set_reviewed("fine")
    assert plan.reviewed is True

    service.set_needs_work("missing tests")
    assert plan.reviewed is False
    assert plan.needs_work_comments == ["missing tests"]


def test_describe_plan_flags():
    plan = Plan(id="p", name="P", points=[PlanPoint(id="1", short_name="a", implemented=True, depends_on=["-1"])])

    text = describe_plan(plan)

    assert "Plan p: P" in text
    assert "[I-- ] 1 a" in text


def test_modes_file_overrides(tmp_path):
    from agent import ModeEngine

    path = tmp_path / "modes.json"
    path.write_text(json.dumps({
        "Coder": {"temperature": 0.4},
        "Docs": {"system_message": "You write docs.", "allowed_tools": ["plan_show"]},
    }), encoding="utf-8")
    engine = ModeEngine.from_config(str(path), "Coder")

    assert engine.find("coder").temperature == 0.4
    assert engine.find("Coder").allowed_tools
    assert engine.resolve().name == "Coder"
    assert engine.resolve("DOCS").system_message == "You write docs."
    assert engine.resolve("nonexistent").name == "Coder"
    with pytest.raises(KeyError):
        engine.set_mode("nonexistent")
