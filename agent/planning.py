"""
Plan state machine.

Evaluation inspects a plan and reports the next corrective step: which phase
failed, the prompt to send, and the mode that should handle it. Evaluation
never mutates the plan; the returned done callback commits the step once the
caller confirms it happened.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .plan import (
    Plan,
    PlanPoint,
    DESCRIPTION_UPDATE,
    DESCRIPTION_REVIEW,
    ARCHITECTURE_CREATION,
    ARCHITECTURE_REVIEW,
    POINTS_CREATION,
    DONE,
    NO_DEPENDENCY,
    PLACEHOLDER_DESCRIPTION,
)
from .prompts import PLAN_PROMPTS, RECOMMENDED_MODES, REVIEW_CHECKLISTS, parse_checklist

logger = logging.getLogger(__name__)

DoneCallback = Callable[[bool, Optional[str]], None]

_PLACEHOLDER_RE = re.compile(r"<(\w+)>")

# Phase active when needs_work was raised -> rework step that redoes its creation phase
_REWORK_STEPS = {
    DESCRIPTION_UPDATE: "description_update_rework",
    DESCRIPTION_REVIEW: "description_update_rework",
    ARCHITECTURE_CREATION: "architecture_creation_rework",
    ARCHITECTURE_REVIEW: "architecture_creation_rework",
    POINTS_CREATION: "points_creation_rework",
}

_REVIEW_FLAGS = {
    DESCRIPTION_REVIEW: "descriptions_reviewed",
    ARCHITECTURE_REVIEW: "architecture_reviewed",
}

_NEXT_PHASE = {
    DESCRIPTION_UPDATE: DESCRIPTION_REVIEW,
    DESCRIPTION_REVIEW: ARCHITECTURE_CREATION,
    ARCHITECTURE_CREATION: ARCHITECTURE_REVIEW,
    ARCHITECTURE_REVIEW: POINTS_CREATION,
    POINTS_CREATION: DONE,
}


@dataclass
class PlanEvaluation:
    """Outcome of evaluating a plan"""
    is_done: bool
    failed_step: Optional[str] = None
    next_step_prompt: Optional[str] = None
    recommended_mode: Optional[str] = None
    reason: str = ""
    failed_points: List[str] = field(default_factory=list)
    done_callback: Optional[DoneCallback] = None

    def commit(self, success: bool, note: Optional[str] = None) -> None:
        """Invoke the done callback; a failing callback is logged, not raised."""
        if self.done_callback is None:
            return
        try:
            self.done_callback(success, note)
        except Exception as e:
            logger.exception(f"Done callback for {self.failed_step} failed: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_done": self.is_done,
            "failed_step": self.failed_step,
            "next_step_prompt": self.next_step_prompt,
            "recommended_mode": self.recommended_mode,
            "reason": self.reason,
            "failed_points": list(self.failed_points),
        }


def validate_architecture(architecture: str) -> Optional[str]:
    """Return an error message when the architecture JSON is unusable, else None."""
    try:
        data = json.loads(architecture)
    except (TypeError, json.JSONDecodeError) as e:
        return f"Invalid JSON format: {e}"
    if not isinstance(data, dict):
        return "Architecture must be a JSON object"

    components = data.get("components")
    connections = data.get("connections")
    if not isinstance(components, list):
        return 'Missing or invalid "components" array'
    if not isinstance(connections, list):
        return 'Missing or invalid "connections" array'

    ids = set()
    for component in components:
        if not isinstance(component, dict) or not component.get("id") or not component.get("name"):
            return 'Each component must have "id" and "name" properties'
        ids.add(component["id"])

    for connection in connections:
        if not isinstance(connection, dict) or not connection.get("from") or not connection.get("to"):
            return 'Each connection must have "from" and "to" properties'
        for end in (connection["from"], connection["to"]):
            if end not in ids:
                return f"Connection references non-existent component: {end}"

    if not components:
        return "Architecture must contain at least one component"
    return None


_REQUIRED_POINT_FIELDS = [
    ("short_name", "short name"),
    ("short_description", "short description"),
    ("detailed_description", "detailed description"),
    ("review_instructions", "review instructions"),
    ("testing_instructions", "testing instructions"),
    ("expected_inputs", "expected inputs"),
    ("expected_outputs", "expected outputs"),
]


def validate_points(plan: Plan) -> Optional[Tuple[str, str]]:
    """Return (point_id, problem) for the first invalid point, or None."""
    known = {p.id for p in plan.points}
    for point in plan.points:
        for attr, label in _REQUIRED_POINT_FIELDS:
            if not (getattr(point, attr) or "").strip():
                return point.id, f"Point {point.id} is missing {label}"
        if not point.depends_on:
            return point.id, (
                f'Point {point.id} has no dependencies set. Use "{NO_DEPENDENCY}" to mark it '
                f"as independent or list the point ids it depends on"
            )
        for dep in point.depends_on:
            if dep != NO_DEPENDENCY and dep not in known:
                return point.id, f"Point {point.id} depends on non-existent point {dep}"
            if dep == point.id:
                return point.id, f"Point {point.id} depends on itself"
    return None


def _descriptions_ready(plan: Plan) -> bool:
    short = plan.short_description.strip()
    long = plan.long_description.strip()
    if not short or not long:
        return False
    return long != PLACEHOLDER_DESCRIPTION and short != PLACEHOLDER_DESCRIPTION


class PlanEvaluator:
    """
    Computes the next step for a plan.

    ``evaluate`` covers plan creation; ``evaluate_completion`` continues with
    point implementation, review, testing and final acceptance.
    Templates, modes and checklists can be overridden per key.
    """

    def __init__(
        self,
        prompts: Optional[Dict[str, str]] = None,
        recommended_modes: Optional[Dict[str, str]] = None,
        checklists: Optional[Dict[str, str]] = None,
    ):
        self.prompts = {**PLAN_PROMPTS, **(prompts or {})}
        self.recommended_modes = {**RECOMMENDED_MODES, **(recommended_modes or {})}
        self.checklists = {**REVIEW_CHECKLISTS, **(checklists or {})}

    # ------------------------------------------------------------------
    # Prompt rendering
    # ------------------------------------------------------------------

    def render(
        self,
        template: str,
        plan: Plan,
        point_ids: Sequence[str] = (),
        reason: str = "",
        checklist: str = "",
    ) -> str:
        values = {
            "plan_id": plan.id,
            "plan_name": plan.name,
            "plan_short_description": plan.short_description or "(empty)",
            "plan_long_description": plan.long_description or "(empty)",
            "plan_original_request": plan.original_request or "No request specified",
            "plan_translated_request": plan.original_request or "No request specified",
            "plan_architecture": plan.architecture or "(none)",
            "plan_points_count": str(len(plan.points)),
            "id": ", ".join(point_ids),
            "reason": reason,
            "rework_reason": reason,
            "checklist": checklist,
        }
        return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)

    def _prompt(self, key: str, plan: Plan, **kwargs) -> str:
        return self.render(self.prompts.get(key, ""), plan, **kwargs)

    # ------------------------------------------------------------------
    # Creation workflow
    # ------------------------------------------------------------------

    def evaluate(self, plan: Plan) -> PlanEvaluation:
        if plan.needs_work:
            return self._rework(plan)

        if not (plan.descriptions_updated and _descriptions_ready(plan)):
            return self._creation_step(
                plan, DESCRIPTION_UPDATE, "Plan descriptions are not updated",
                lambda: setattr(plan, "descriptions_updated", True),
            )

        if not plan.descriptions_reviewed:
            return self._review_step(plan, DESCRIPTION_REVIEW, "Plan descriptions are not reviewed")

        if not (plan.architecture_created and plan.architecture.strip()):
            return self._creation_step(
                plan, ARCHITECTURE_CREATION, "Plan architecture is not created",
                lambda: setattr(plan, "architecture_created", True),
            )

        error = validate_architecture(plan.architecture)
        if error:
            return PlanEvaluation(
                is_done=False,
                failed_step="architecture_creation_rework",
                next_step_prompt=self._with_reason(
                    self._prompt("architecture_creation_rework", plan, reason=error), error
                ),
                recommended_mode=self.recommended_modes.get(ARCHITECTURE_CREATION),
                reason=f"Architecture validation failed: {error}",
            )

        if not plan.architecture_reviewed:
            return self._review_step(plan, ARCHITECTURE_REVIEW, "Plan architecture is not reviewed")

        if not (plan.points_created and plan.points):
            return self._creation_step(
                plan, POINTS_CREATION, "Plan points are not created",
                lambda: setattr(plan, "points_created", True),
            )

        problem = validate_points(plan)
        if problem:
            point_id, message = problem
            return PlanEvaluation(
                is_done=False,
                failed_step="points_creation_rework",
                next_step_prompt=self._with_reason(
                    self._prompt("points_creation_rework", plan, point_ids=[point_id], reason=message),
                    message,
                ),
                recommended_mode=self.recommended_modes.get(POINTS_CREATION),
                reason=message,
                failed_points=[point_id],
            )

        return PlanEvaluation(
            is_done=True,
            reason=self._prompt("creation_complete", plan),
        )

    def _creation_step(self, plan: Plan, phase: str, reason: str, commit: Callable[[], None]) -> PlanEvaluation:
        def done(success: bool, note: Optional[str] = None) -> None:
            if not success or plan.needs_work:
                return
            commit()
            plan.creation_step = _NEXT_PHASE[phase]
            plan.add_log("plan", phase, plan.id, f"Plan step {phase} completed", note or "")

        return PlanEvaluation(
            is_done=False,
            failed_step=phase,
            next_step_prompt=self._prompt(phase, plan),
            recommended_mode=self.recommended_modes.get(phase),
            reason=reason,
            done_callback=done,
        )

    def _review_step(self, plan: Plan, phase: str, reason: str) -> PlanEvaluation:
        if plan.creation_checklist is not None and plan.creation_step == phase:
            remaining = list(plan.creation_checklist)
        else:
            remaining = parse_checklist(self.checklists.get(phase, ""))

        if remaining:
            checklist = self.render(remaining[0], plan)
        else:
            checklist = f"Review {phase.split('_')[0]} of plan {plan.id}."

        def done(success: bool, note: Optional[str] = None) -> None:
            if not success or plan.needs_work:
                return
            rest = remaining[1:]
            if rest:
                plan.creation_checklist = rest
                plan.creation_step = phase
                return
            setattr(plan, _REVIEW_FLAGS[phase], True)
            plan.creation_checklist = None
            plan.creation_step = _NEXT_PHASE[phase]
            plan.add_log("plan", phase, plan.id, f"Plan step {phase} completed", note or "")

        return PlanEvaluation(
            is_done=False,
            failed_step=phase,
            next_step_prompt=self._prompt(phase, plan, checklist=checklist),
            recommended_mode=self.recommended_modes.get(phase),
            reason=reason,
            done_callback=done,
        )

    def _rework(self, plan: Plan) -> PlanEvaluation:
        step = _REWORK_STEPS.get(plan.creation_step, "plan_rework")
        comments = [c for c in plan.needs_work_comments if c]
        reason = "\n".join(f"- {c}" for c in comments) or "- Plan was flagged as needing work"

        def done(success: bool, note: Optional[str] = None) -> None:
            if not success:
                return
            plan.needs_work = False
            plan.needs_work_comments = []
            # A rework raised during review sends the fixed content back to review
            flag = _REVIEW_FLAGS.get(plan.creation_step)
            if flag:
                setattr(plan, flag, False)
                plan.creation_checklist = None
            plan.add_log("plan", step, plan.id, "Plan rework completed", note or "")

        return PlanEvaluation(
            is_done=False,
            failed_step=step,
            next_step_prompt=self._with_reason(self._prompt(step, plan, reason=reason), reason),
            recommended_mode=self.recommended_modes.get("rework_fix"),
            reason="Plan needs work",
            done_callback=done,
        )

    @staticmethod
    def _with_reason(prompt: str, reason: str) -> str:
        # Custom templates may omit the placeholder; the problems still have to reach the model
        if reason in prompt:
            return prompt
        return f"{prompt}\n\nProblems found:\n{reason}".strip()

    # ------------------------------------------------------------------
    # Implementation workflow
    # ------------------------------------------------------------------

    def evaluate_completion(self, plan: Plan) -> PlanEvaluation:
        creation = self.evaluate(plan)
        if not creation.is_done:
            return creation

        rework = [p for p in plan.points if p.need_rework]
        if rework:
            point = rework[0]
            return self._point_step(plan, "rework", point, point.rework_reason or "Plan point needs rework")

        unreviewed = [p for p in plan.points if p.implemented and not p.reviewed]
        if unreviewed:
            return self._point_step(plan, "code_review", unreviewed[0], "Plan point is not reviewed")

        untested = [p for p in plan.points if p.implemented and p.reviewed and not p.tested]
        if untested:
            point = untested[0]
            return self._point_step(plan, "testing", point, f"Plan point {point.id} is not tested")

        unimplemented = [p for p in plan.points if not p.implemented]
        if unimplemented:
            point = self._next_ready_point(plan, unimplemented)
            return self._point_step(plan, "implementation", point, f"Plan point {point.id} is not implemented")

        if not plan.reviewed:
            return self._plan_review_step(plan)

        if not plan.accepted:
            return PlanEvaluation(
                is_done=False,
                failed_step="acceptance",
                next_step_prompt=self._prompt("acceptance", plan),
                recommended_mode=self.recommended_modes.get("acceptance"),
                reason="Plan has not been accepted yet",
            )

        return PlanEvaluation(is_done=True, reason=self._prompt("done", plan))

    @staticmethod
    def _next_ready_point(plan: Plan, candidates: List[PlanPoint]) -> PlanPoint:
        """First candidate whose dependencies are all implemented."""
        for point in candidates:
            deps = [d for d in point.depends_on if d != NO_DEPENDENCY]
            if all((plan.get_point(d) is None) or plan.get_point(d).implemented for d in deps):
                return point
        return candidates[0]

    def _point_step(self, plan: Plan, step: str, point: PlanPoint, reason: str) -> PlanEvaluation:
        return PlanEvaluation(
            is_done=False,
            failed_step=step,
            next_step_prompt=self._prompt(step, plan, point_ids=[point.id], reason=reason),
            recommended_mode=self.recommended_modes.get(step),
            reason=reason,
            failed_points=[point.id],
        )

    def _plan_review_step(self, plan: Plan) -> PlanEvaluation:
        if plan.review_checklist is not None:
            remaining = list(plan.review_checklist)
        else:
            remaining = parse_checklist(self.checklists.get("plan_review", ""))
        checklist = self.render(remaining[0], plan) if remaining else f"Review plan {plan.id}."

        def done(success: bool, note: Optional[str] = None) -> None:
            if not success or plan.needs_work:
                return
            rest = remaining[1:]
            if rest:
                plan.review_checklist = rest
                return
            plan.review_checklist = None
            plan.reviewed = True
            plan.reviewed_comment = "All checklist items completed"
            plan.add_log("plan", "reviewed", plan.id, "Plan review completed", note or "")

        return PlanEvaluation(
            is_done=False,
            failed_step="plan_review",
            next_step_prompt=self._prompt("plan_review", plan, checklist=checklist),
            recommended_mode=self.recommended_modes.get("plan_review"),
            reason="Plan needs to be reviewed",
            done_callback=done,
        )
