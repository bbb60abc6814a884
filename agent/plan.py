"""
Plan data model.
A plan moves through ordered creation phases, then its points are implemented,
reviewed and tested.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Creation phases, in order
DESCRIPTION_UPDATE = "description_update"
DESCRIPTION_REVIEW = "description_review"
ARCHITECTURE_CREATION = "architecture_creation"
ARCHITECTURE_REVIEW = "architecture_review"
POINTS_CREATION = "points_creation"
DONE = "done"

CREATION_PHASES = [
    DESCRIPTION_UPDATE,
    DESCRIPTION_REVIEW,
    ARCHITECTURE_CREATION,
    ARCHITECTURE_REVIEW,
    POINTS_CREATION,
    DONE,
]

# Dependency sentinel for points that depend on nothing
NO_DEPENDENCY = "-1"

PLACEHOLDER_DESCRIPTION = "Plan created from user request."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PlanLogEntry:
    timestamp: str
    target: str  # "plan" or "point"
    action: str
    target_id: str
    message: str
    comment: str = ""


@dataclass
class PlanPoint:
    """One unit of work within a plan"""
    id: str
    short_name: str = ""
    short_description: str = ""
    detailed_description: str = ""
    review_instructions: str = ""
    testing_instructions: str = ""
    expected_inputs: str = ""
    expected_outputs: str = ""
    depends_on: List[str] = field(default_factory=list)
    care_on: List[str] = field(default_factory=list)
    comment: str = ""
    implemented: bool = False
    reviewed: bool = False
    reviewed_comment: str = ""
    tested: bool = False
    need_rework: bool = False
    rework_reason: str = ""

    def mark_need_rework(self, reason: str) -> None:
        """Flag the point for rework.

        The code stays implemented; the review and test results no longer
        apply and have to be earned again.
        """
        self.need_rework = True
        self.rework_reason = reason
        self.reviewed = False
        self.reviewed_comment = ""
        self.tested = False

    def mark_implemented(self) -> None:
        self.implemented = True
        self.need_rework = False
        self.rework_reason = ""


@dataclass
class Plan:
    """A multi-step plan and its progress flags"""
    id: str
    name: str
    short_description: str = ""
    long_description: str = ""
    original_request: str = ""
    architecture: str = ""
    points: List[PlanPoint] = field(default_factory=list)
    creation_step: str = DESCRIPTION_UPDATE
    descriptions_updated: bool = False
    descriptions_reviewed: bool = False
    architecture_created: bool = False
    architecture_reviewed: bool = False
    points_created: bool = False
    # Remaining review checklist items; None until a review phase starts
    creation_checklist: Optional[List[str]] = None
    # Remaining final plan review items
    review_checklist: Optional[List[str]] = None
    reviewed: bool = False
    reviewed_comment: str = ""
    accepted: bool = False
    accepted_comment: str = ""
    needs_work: bool = False
    needs_work_comments: List[str] = field(default_factory=list)
    logs: List[PlanLogEntry] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = _now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at

    def get_point(self, point_id: str) -> Optional[PlanPoint]:
        for point in self.points:
            if point.id == point_id:
                return point
        return None

    def add_log(self, target: str, action: str, target_id: str, message: str, comment: str = "") -> None:
        self.logs.append(PlanLogEntry(
            timestamp=_now_iso(),
            target=target,
            action=action,
            target_id=target_id,
            message=message,
            comment=comment,
        ))
        self.updated_at = _now_iso()

    def is_creation_complete(self) -> bool:
        return self.creation_step == DONE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        data = dict(data)
        point_fields = set(PlanPoint.__dataclass_fields__)
        points = [
            PlanPoint(**{k: v for k, v in p.items() if k in point_fields})
            for p in data.pop("points", [])
        ]
        logs = [PlanLogEntry(**entry) for entry in data.pop("logs", [])]
        known = set(cls.__dataclass_fields__)
        kwargs = {k: v for k, v in data.items() if k in known}
        return cls(points=points, logs=logs, **kwargs)
