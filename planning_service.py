"""
Planning service.
Owns the in-memory plans, applies plan and point changes, tracks the
current plan and persists every change through the plan store.
"""

import json
import logging
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from agent.plan import Plan, PlanPoint, NO_DEPENDENCY, PLACEHOLDER_DESCRIPTION
from agent.planning import PlanEvaluation, PlanEvaluator
from plans import PlanStore

logger = logging.getLogger(__name__)

POINT_ACTIONS = ("implemented", "reviewed", "tested", "need_rework")

POINT_FIELDS = (
    "short_name",
    "short_description",
    "detailed_description",
    "review_instructions",
    "testing_instructions",
    "expected_inputs",
    "expected_outputs",
    "depends_on",
    "care_on",
)

POINT_SECTIONS = (
    "plan_short_description",
    "plan_long_description",
    "short_description",
    "detailed_description",
    "review_instructions",
    "testing_instructions",
    "expected_inputs",
    "expected_outputs",
    "depends_on",
    "care_on",
    "comments",
    "state",
)


class PlanError(Exception):
    """Raised for invalid plan operations (unknown plan/point, bad input)"""
    pass


def _slugify(name: str) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", name.lower().strip()).strip("-")[:40]
    return s or "plan"


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


class PlanningService:
    """
    Plan operations used by the plan tools and the coordinator.
    The store is optional; without it plans live only in memory.
    """

    def __init__(self, store: Optional[PlanStore] = None, evaluator: Optional[PlanEvaluator] = None):
        self.store = store
        self.evaluator = evaluator or PlanEvaluator()
        self._plans: Dict[str, Plan] = {}
        self.current_plan_id: Optional[str] = None
        if store is not None:
            for plan in store.list_plans():
                self._plans[plan.id] = plan
            logger.info(f"Loaded {len(self._plans)} plans from {store.base_dir}")

    # ------------------------------------------------------------------
    # Current plan
    # ------------------------------------------------------------------

    @property
    def current_plan(self) -> Optional[Plan]:
        if self.current_plan_id is None:
            return None
        return self._plans.get(self.current_plan_id)

    def set_current_plan(self, plan_id: Optional[str]) -> None:
        if plan_id is not None and plan_id not in self._plans:
            raise PlanError(f"Plan with ID '{plan_id}' not found")
        self.current_plan_id = plan_id

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def get_plan(self, plan_id: Optional[str] = None) -> Plan:
        """Return the plan by id, or the current plan when no id is given."""
        pid = plan_id or self.current_plan_id
        if not pid:
            raise PlanError("No plan id given and no plan is open")
        plan = self._plans.get(pid)
        if plan is None:
            raise PlanError(f"Plan with ID '{pid}' not found")
        return plan

    def list_plans(self) -> List[Plan]:
        return sorted(self._plans.values(), key=lambda p: p.updated_at or "", reverse=True)

    def create_plan(
        self,
        name: str,
        short_description: str = "",
        long_description: str = "",
        original_request: str = "",
        plan_id: Optional[str] = None,
    ) -> Plan:
        plan_id = plan_id or f"{_slugify(name)}-{uuid.uuid4().hex[:6]}"
        if plan_id in self._plans:
            raise PlanError(f"Plan with ID '{plan_id}' already exists")
        plan = Plan(
            id=plan_id,
            name=name,
            short_description=short_description or PLACEHOLDER_DESCRIPTION,
            long_description=long_description or PLACEHOLDER_DESCRIPTION,
            original_request=original_request,
        )
        plan.add_log("plan", "created", plan_id, f"Plan '{name}' created")
        self._plans[plan_id] = plan
        self.current_plan_id = plan_id
        self.save(plan)
        logger.info(f"Created plan {plan_id}")
        return plan

    def update_plan(
        self,
        plan_id: Optional[str] = None,
        name: Optional[str] = None,
        short_description: Optional[str] = None,
        long_description: Optional[str] = None,
    ) -> Plan:
        plan = self.get_plan(plan_id)
        if name:
            plan.name = name
        if short_description is not None:
            plan.short_description = short_description
        if long_description is not None:
            plan.long_description = long_description
        plan.add_log("plan", "changed", plan.id, "Plan details changed")
        self.save(plan)
        return plan

    def set_architecture(self, architecture: Union[str, Dict[str, Any]], plan_id: Optional[str] = None) -> Plan:
        plan = self.get_plan(plan_id)
        if not isinstance(architecture, str):
            architecture = json.dumps(architecture, ensure_ascii=False)
        plan.architecture = architecture
        plan.add_log("plan", "architecture", plan.id, "Plan architecture set")
        self.save(plan)
        return plan

    def add_points(self, points: Iterable[Dict[str, Any]], plan_id: Optional[str] = None) -> List[PlanPoint]:
        """Add points to a plan; a point with an existing id replaces it."""
        plan = self.get_plan(plan_id)
        added = []
        for raw in points:
            if not isinstance(raw, dict):
                raise PlanError(f"Point must be an object, got {type(raw).__name__}")
            point_id = str(raw.get("id") or len(plan.points) + 1)
            point = PlanPoint(
                id=point_id,
                short_name=raw.get("short_name", ""),
                short_description=raw.get("short_description", ""),
                detailed_description=raw.get("detailed_description", ""),
                review_instructions=raw.get("review_instructions", ""),
                testing_instructions=raw.get("testing_instructions", ""),
                expected_inputs=raw.get("expected_inputs", ""),
                expected_outputs=raw.get("expected_outputs", ""),
                depends_on=_as_list(raw.get("depends_on")) or [],
                care_on=_as_list(raw.get("care_on")),
            )
            existing = plan.get_point(point_id)
            if existing is not None:
                plan.points[plan.points.index(existing)] = point
            else:
                plan.points.append(point)
            added.append(point)
        plan.add_log("plan", "points", plan.id, f"{len(added)} points added")
        self.save(plan)
        return added

    def delete_plan(self, plan_id: str, force: bool = False) -> None:
        plan = self.get_plan(plan_id)
        if not plan.accepted and not force:
            raise PlanError(
                f"Plan '{plan_id}' is not complete. Deleting it requires force=true after user confirmation."
            )
        del self._plans[plan_id]
        if self.current_plan_id == plan_id:
            self.current_plan_id = None
        if self.store is not None:
            self.store.delete(plan_id)
        logger.info(f"Deleted plan {plan_id}")

    # ------------------------------------------------------------------
    # Plan flags
    # ------------------------------------------------------------------

    def set_reviewed(self, comment: str = "", plan_id: Optional[str] = None) -> Plan:
        """Record a positive review.

        During creation the phase is committed by the evaluation callback;
        afterwards this marks the whole plan reviewed.
        """
        plan = self.get_plan(plan_id)
        plan.reviewed_comment = comment
        if plan.is_creation_complete():
            plan.reviewed = True
        plan.add_log("plan", "reviewed", plan.id, "Plan reviewed", comment)
        self.save(plan)
        return plan

    def set_needs_work(self, comments: Union[str, List[str]], plan_id: Optional[str] = None) -> Plan:
        plan = self.get_plan(plan_id)
        if isinstance(comments, str):
            comments = [comments]
        comments = [c for c in comments if c and c.strip()]
        if not comments:
            raise PlanError("At least one comment describing the problem is required")
        plan.needs_work = True
        plan.needs_work_comments.extend(comments)
        plan.reviewed = False
        plan.accepted = False
        plan.add_log("plan", "needs_work", plan.id, "Plan needs work", "; ".join(comments))
        self.save(plan)
        return plan

    def set_accepted(self, comment: str = "", plan_id: Optional[str] = None) -> Plan:
        plan = self.get_plan(plan_id)
        plan.accepted = True
        plan.accepted_comment = comment
        plan.add_log("plan", "accepted", plan.id, "Plan accepted", comment)
        self.save(plan)
        return plan

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def set_point_state(
        self,
        point_id: str,
        action: str,
        comment: str = "",
        plan_id: Optional[str] = None,
    ) -> PlanPoint:
        plan = self.get_plan(plan_id)
        point = plan.get_point(point_id)
        if point is None:
            raise PlanError(f"Point '{point_id}' not found in plan '{plan.id}'")

        if action == "implemented":
            point.mark_implemented()
        elif action == "reviewed":
            if not point.implemented:
                raise PlanError(f"Point '{point_id}' is not implemented and cannot be reviewed")
            point.reviewed = True
            point.reviewed_comment = comment
        elif action == "tested":
            if not point.implemented:
                raise PlanError(f"Point '{point_id}' is not implemented and cannot be tested")
            point.tested = True
        elif action == "need_rework":
            if not comment:
                raise PlanError("A rework reason is required")
            point.mark_need_rework(comment)
        else:
            raise PlanError(f"Unknown point action '{action}'. Use one of: {', '.join(POINT_ACTIONS)}")

        plan.add_log("point", action, point_id, f"Point {point_id} {action}", comment)
        self.save(plan)
        return point

    def comment_point(self, point_id: str, comment: str, plan_id: Optional[str] = None) -> PlanPoint:
        plan = self.get_plan(plan_id)
        point = plan.get_point(point_id)
        if point is None:
            raise PlanError(f"Point '{point_id}' not found in plan '{plan.id}'")
        point.comment = comment
        plan.add_log("point", "comment", point_id, f"Point {point_id} commented", comment)
        self.save(plan)
        return point

    def _point(self, plan: Plan, point_id: str) -> PlanPoint:
        point = plan.get_point(str(point_id))
        if point is None:
            raise PlanError(f"Point '{point_id}' not found in plan '{plan.id}'")
        return point

    def change_point(self, point_id: str, changes: Dict[str, Any], plan_id: Optional[str] = None) -> PlanPoint:
        """Update the given fields of a point; None values leave a field as it is."""
        plan = self.get_plan(plan_id)
        point = self._point(plan, point_id)
        changed = []
        for name, value in changes.items():
            if value is None:
                continue
            if name not in POINT_FIELDS:
                raise PlanError(f"Unknown point field '{name}'. Use one of: {', '.join(POINT_FIELDS)}")
            if name in ("depends_on", "care_on"):
                value = _as_list(value)
            setattr(point, name, value)
            changed.append(name)
        if not changed:
            raise PlanError("Nothing to change: give at least one point field")
        plan.add_log("point", "changed", point.id, f"Point {point.id} changed: {', '.join(changed)}")
        self.save(plan)
        return point

    def remove_points(self, point_ids: Union[str, List[str]], plan_id: Optional[str] = None) -> List[PlanPoint]:
        """Remove points and every reference other points hold to them."""
        plan = self.get_plan(plan_id)
        ids = _as_list(point_ids)
        if not ids:
            raise PlanError("point_ids must name at least one point")
        missing = [pid for pid in ids if plan.get_point(pid) is None]
        if missing:
            raise PlanError(f"Points not found in plan '{plan.id}': {', '.join(missing)}")

        removed = [p for p in plan.points if p.id in ids]
        plan.points = [p for p in plan.points if p.id not in ids]
        for point in plan.points:
            point.care_on = [pid for pid in point.care_on if pid not in ids]
            depends_on = [pid for pid in point.depends_on if pid not in ids]
            # A point that only depended on removed points is now independent
            if point.depends_on and not depends_on:
                depends_on = [NO_DEPENDENCY]
            point.depends_on = depends_on
        plan.add_log("plan", "points_removed", plan.id, f"Removed points: {', '.join(ids)}")
        self.save(plan)
        return removed

    def _check_references(self, plan: Plan, point: PlanPoint, ids: List[str], label: str) -> None:
        for pid in ids:
            if pid == point.id:
                raise PlanError(f"Point '{point.id}' cannot reference itself in {label}")
            if plan.get_point(pid) is None:
                raise PlanError(f"{label.capitalize()} point with ID '{pid}' not found in plan '{plan.id}'")

    def set_point_dependencies(
        self,
        point_id: str,
        depends_on: Any,
        care_on: Any = None,
        plan_id: Optional[str] = None,
    ) -> PlanPoint:
        """Replace the dependencies of a point, and its care-on list when given."""
        plan = self.get_plan(plan_id)
        point = self._point(plan, point_id)
        dependencies = [pid for pid in _as_list(depends_on) if pid != NO_DEPENDENCY]
        self._check_references(plan, point, dependencies, "depends-on")
        if care_on is not None:
            care = _as_list(care_on)
            self._check_references(plan, point, care, "care-on")
            point.care_on = care
        point.depends_on = dependencies or [NO_DEPENDENCY]
        plan.add_log("point", "depends_on", point.id, f"Point {point.id} depends on {', '.join(point.depends_on)}")
        self.save(plan)
        return point

    def set_point_care_on(self, point_id: str, care_on: Any, plan_id: Optional[str] = None) -> PlanPoint:
        plan = self.get_plan(plan_id)
        point = self._point(plan, point_id)
        care = _as_list(care_on)
        self._check_references(plan, point, care, "care-on")
        point.care_on = care
        plan.add_log("point", "care_on", point.id, f"Point {point.id} cares on {', '.join(care) or 'nothing'}")
        self.save(plan)
        return point

    def get_point(self, point_id: str, plan_id: Optional[str] = None) -> PlanPoint:
        return self._point(self.get_plan(plan_id), point_id)

    def plan_state(self, plan_id: Optional[str] = None) -> Dict[str, Any]:
        """Progress counters of a plan's points.

        A point is pending until it is both reviewed and tested.
        """
        plan = self.get_plan(plan_id)
        points = plan.points
        total = len(points)
        implemented = sum(1 for p in points if p.implemented)
        reviewed = sum(1 for p in points if p.reviewed)
        tested = sum(1 for p in points if p.tested)
        return {
            "plan_id": plan.id,
            "creation_step": plan.creation_step,
            "total": total,
            "implemented": implemented,
            "reviewed": reviewed,
            "tested": tested,
            "need_rework": [p.id for p in points if p.need_rework],
            "all_implemented": total > 0 and implemented == total,
            "all_reviewed": total > 0 and reviewed == total,
            "all_tested": total > 0 and tested == total,
            "accepted": plan.accepted,
            "pending": [p.id for p in points if not (p.reviewed and p.tested)],
        }

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, plan_id: Optional[str] = None, completion: bool = False) -> PlanEvaluation:
        """Evaluate a plan; committing the result also persists the plan."""
        plan = self.get_plan(plan_id)
        if completion:
            evaluation = self.evaluator.evaluate_completion(plan)
        else:
            evaluation = self.evaluator.evaluate(plan)

        callback = evaluation.done_callback
        if callback is not None:
            def done(success: bool, note: Optional[str] = None) -> None:
                callback(success, note)
                self.save(plan)
            evaluation.done_callback = done
        return evaluation

    def save(self, plan: Plan) -> None:
        if self.store is not None:
            self.store.save(plan)


def describe_plan(plan: Plan) -> str:
    """Human-readable plan summary used by plan_show."""
    lines = [
        f"Plan {plan.id}: {plan.name}",
        f"Step: {plan.creation_step}",
        f"Short description: {plan.short_description}",
        f"Long description: {plan.long_description}",
        f"Reviewed: {plan.reviewed}  Accepted: {plan.accepted}  Needs work: {plan.needs_work}",
    ]
    if plan.needs_work_comments:
        lines.append("Needs work comments:")
        lines.extend(f"  - {c}" for c in plan.needs_work_comments)
    if plan.architecture:
        lines.append(f"Architecture: {plan.architecture}")
    if plan.points:
        lines.append("Points:")
        for p in plan.points:
            flags = "".join([
                "I" if p.implemented else "-",
                "R" if p.reviewed else "-",
                "T" if p.tested else "-",
                "!" if p.need_rework else " ",
            ])
            deps = ", ".join(d for d in p.depends_on if d != NO_DEPENDENCY) or "none"
            lines.append(f"  [{flags}] {p.id} {p.short_name}: {p.short_description} (depends on: {deps})")
    return "\n".join(lines)


def describe_point(plan: Plan, point: PlanPoint, sections: Iterable[str] = ("all",)) -> str:
    """Selected sections of one point, used by plan_point_show."""
    wanted = set(sections)
    if "all" in wanted:
        wanted = set(POINT_SECTIONS)
    deps = ", ".join(d for d in point.depends_on if d != NO_DEPENDENCY) or "none"
    state = ", ".join(flag for flag, on in (
        ("implemented", point.implemented),
        ("reviewed", point.reviewed),
        ("tested", point.tested),
        ("need rework", point.need_rework),
    ) if on) or "open"
    values = {
        "plan_short_description": plan.short_description,
        "plan_long_description": plan.long_description,
        "short_description": point.short_description,
        "detailed_description": point.detailed_description,
        "review_instructions": point.review_instructions,
        "testing_instructions": point.testing_instructions,
        "expected_inputs": point.expected_inputs,
        "expected_outputs": point.expected_outputs,
        "depends_on": deps,
        "care_on": ", ".join(point.care_on) or "none",
        "comments": "\n".join(c for c in (point.comment, point.reviewed_comment, point.rework_reason) if c) or "none",
        "state": state,
    }
    lines = [f"Point {point.id}: {point.short_name}"]
    for section in POINT_SECTIONS:
        if section in wanted:
            lines.append(f"{section.replace('_', ' ').capitalize()}: {values[section]}")
    return "\n".join(lines)
