"""Plan tools: the actions through which modes create, review and advance plans."""

import json
import logging
from functools import partial, wraps
from typing import Any, Dict, List, Optional

from agent.plan import NO_DEPENDENCY
from planning_service import (
    POINT_FIELDS,
    POINT_SECTIONS,
    PlanError,
    PlanningService,
    describe_plan,
    describe_point,
)
from tools._common import ToolResult
from tools.registry import ToolRegistry
from tools.schemas import PLAN_TOOL_DEFINITIONS

logger = logging.getLogger(__name__)


def plan_new(service: PlanningService, name: str, short_description: str = "",
             long_description: str = "", original_request: str = "",
             plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    plan = service.create_plan(
        name=name,
        short_description=short_description,
        long_description=long_description,
        original_request=original_request,
        plan_id=plan_id,
    )
    return ToolResult.ok(f"Plan '{plan.name}' created with id {plan.id} and opened.")


def plan_list(service: PlanningService, **kw: Any) -> ToolResult:
    plans = service.list_plans()
    if not plans:
        return ToolResult.ok("No plans.")
    lines = []
    for plan in plans:
        marker = "*" if plan.id == service.current_plan_id else " "
        status = "accepted" if plan.accepted else plan.creation_step
        lines.append(f"{marker} {plan.id}: {plan.name} [{status}] {plan.short_description}")
    return ToolResult.ok("\n".join(lines))


def plan_open(service: PlanningService, plan_id: str, **kw: Any) -> ToolResult:
    service.set_current_plan(plan_id)
    return ToolResult.ok(f"Plan {plan_id} is now open.")


def plan_show(service: PlanningService, plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    return ToolResult.ok(describe_plan(service.get_plan(plan_id)))


def plan_change(service: PlanningService, plan_id: Optional[str] = None, name: Optional[str] = None,
                short_description: Optional[str] = None, long_description: Optional[str] = None,
                **kw: Any) -> ToolResult:
    if name is None and short_description is None and long_description is None:
        return ToolResult.fail("Nothing to change: give name, short_description or long_description")
    plan = service.update_plan(plan_id, name, short_description, long_description)
    return ToolResult.ok(f"Plan {plan.id} updated.")


def plan_set_architecture(service: PlanningService, architecture: Any,
                          plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    plan = service.set_architecture(architecture, plan_id)
    return ToolResult.ok(f"Architecture of plan {plan.id} set.")


def plan_create_points(service: PlanningService, points: Any,
                       plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    if isinstance(points, str):
        try:
            points = json.loads(points)
        except json.JSONDecodeError as e:
            return ToolResult.fail(f"points is not valid JSON: {e}")
    if isinstance(points, dict):
        points = [points]
    if not isinstance(points, list) or not points:
        return ToolResult.fail("points must be a non-empty list")
    added = service.add_points(points, plan_id)
    ids = ", ".join(p.id for p in added)
    return ToolResult.ok(f"Added {len(added)} points: {ids}")


def plan_reviewed(service: PlanningService, plan_id: Optional[str] = None,
                  comment: str = "", **kw: Any) -> ToolResult:
    plan = service.set_reviewed(comment, plan_id)
    return ToolResult.ok(f"Review of plan {plan.id} recorded.")


def plan_need_works(service: PlanningService, comments: Any,
                    plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    plan = service.set_needs_work(comments, plan_id)
    return ToolResult.ok(
        f"Plan {plan.id} marked as needing work ({len(plan.needs_work_comments)} open comments)."
    )


def plan_accepted(service: PlanningService, plan_id: Optional[str] = None,
                  comment: str = "", **kw: Any) -> ToolResult:
    plan = service.set_accepted(comment, plan_id)
    return ToolResult.ok(f"Plan {plan.id} accepted.")


def plan_delete(service: PlanningService, plan_id: str, force: bool = False, **kw: Any) -> ToolResult:
    service.delete_plan(plan_id, force=force)
    return ToolResult.ok(f"Plan {plan_id} deleted.")


def plan_evaluate(service: PlanningService, plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    evaluation = service.evaluate(plan_id, completion=True)
    return ToolResult.ok(json.dumps(evaluation.to_dict(), indent=2))


def _point_action(action: str, service: PlanningService, point_id: str,
                  plan_id: Optional[str] = None, comment: str = "", **kw: Any) -> ToolResult:
    point = service.set_point_state(str(point_id), action, comment, plan_id)
    return ToolResult.ok(f"Point {point.id} marked {action.replace('_', ' ')}.")


def plan_point_comment(service: PlanningService, point_id: str, comment: str,
                       plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    point = service.comment_point(str(point_id), comment, plan_id)
    return ToolResult.ok(f"Comment stored on point {point.id}.")


def plan_change_point(service: PlanningService, point_id: str, plan_id: Optional[str] = None,
                      **fields: Any) -> ToolResult:
    changes = {name: value for name, value in fields.items() if name in POINT_FIELDS}
    point = service.change_point(str(point_id), changes, plan_id)
    return ToolResult.ok(f"Point {point.id} updated.")


def plan_point_remove(service: PlanningService, point_ids: Any,
                      plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    removed = service.remove_points(point_ids, plan_id)
    lines = [f"Removed {len(removed)} point(s):"]
    lines.extend(f"  {p.id} {p.short_name}" for p in removed)
    return ToolResult.ok("\n".join(lines))


def plan_point_depends_on(service: PlanningService, point_id: str, depends_on: Any = None,
                          care_on: Any = None, plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    point = service.set_point_dependencies(str(point_id), depends_on, care_on, plan_id)
    deps = ", ".join(d for d in point.depends_on if d != NO_DEPENDENCY) or "none"
    return ToolResult.ok(
        f"Point {point.id} dependencies updated.\n"
        f"  Depends on: {deps}\n"
        f"  Cares on: {', '.join(point.care_on) or 'none'}"
    )


def plan_point_care_on(service: PlanningService, point_id: str, care_on_point_ids: Any,
                       plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    point = service.set_point_care_on(str(point_id), care_on_point_ids, plan_id)
    if not point.care_on:
        return ToolResult.ok(f"Care-on points cleared for point {point.id}.")
    return ToolResult.ok(f"Care-on points set for point {point.id}: {', '.join(point.care_on)}")


def plan_point_show(service: PlanningService, point_id: str, sections: Any = None,
                    plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    plan = service.get_plan(plan_id)
    point = service.get_point(str(point_id), plan.id)
    wanted = _as_sections(sections)
    unknown = [s for s in wanted if s != "all" and s not in POINT_SECTIONS]
    if unknown:
        return ToolResult.fail(
            f"Unknown sections: {', '.join(unknown)}. Use 'all' or any of: {', '.join(POINT_SECTIONS)}"
        )
    return ToolResult.ok(describe_point(plan, point, wanted))


def plan_state(service: PlanningService, plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    return ToolResult.ok(json.dumps(service.plan_state(plan_id), indent=2))


def plan_done(service: PlanningService, plan_id: Optional[str] = None, **kw: Any) -> ToolResult:
    state = service.plan_state(plan_id)
    if state["accepted"]:
        return ToolResult.ok(f"Plan {state['plan_id']} is COMPLETE: it has been accepted.")
    pending = ", ".join(state["pending"]) or "none"
    return ToolResult.ok(f"Plan {state['plan_id']} is IN PROGRESS. Pending points: {pending}")


def _as_sections(sections: Any) -> List[str]:
    if not sections:
        return ["all"]
    if isinstance(sections, str):
        sections = sections.split(",")
    return [str(s).strip() for s in sections if str(s).strip()]


def _guard(handler):
    """Turn PlanError into a failed ToolResult."""
    @wraps(handler)
    def wrapper(*args, **kwargs) -> ToolResult:
        try:
            return handler(*args, **kwargs)
        except PlanError as e:
            return ToolResult.fail(str(e))
    return wrapper


PLAN_TOOL_IMPLEMENTATIONS = {
    "plan_new": plan_new,
    "plan_list": plan_list,
    "plan_open": plan_open,
    "plan_show": plan_show,
    "plan_change": plan_change,
    "plan_set_architecture": plan_set_architecture,
    "plan_create_points": plan_create_points,
    "plan_reviewed": plan_reviewed,
    "plan_need_works": plan_need_works,
    "plan_accepted": plan_accepted,
    "plan_delete": plan_delete,
    "plan_evaluate": plan_evaluate,
    "plan_point_implemented": partial(_point_action, "implemented"),
    "plan_point_reviewed": partial(_point_action, "reviewed"),
    "plan_point_tested": partial(_point_action, "tested"),
    "plan_point_need_rework": partial(_point_action, "need_rework"),
    "plan_point_comment": plan_point_comment,
    "plan_change_point": plan_change_point,
    "plan_point_remove": plan_point_remove,
    "plan_point_depends_on": plan_point_depends_on,
    "plan_point_care_on": plan_point_care_on,
    "plan_point_show": plan_point_show,
    "plan_state": plan_state,
    "plan_done": plan_done,
}


def register_plan_tools(registry: ToolRegistry, service: PlanningService) -> List[str]:
    """Register every plan tool bound to ``service``. Returns the names."""
    names = []
    definitions: Dict[str, Dict[str, Any]] = {d["function"]["name"]: d for d in PLAN_TOOL_DEFINITIONS}
    for name, impl in PLAN_TOOL_IMPLEMENTATIONS.items():
        registry.register(definitions[name], _guard(partial(impl, service)))
        names.append(name)
    logger.debug(f"Registered {len(names)} plan tools")
    return names
