"""Tool schema definitions (OpenAI function-calling format) for the plan tools."""

from typing import Any, Dict, List, Optional

from planning_service import POINT_SECTIONS


def _function(
    name: str,
    description: str,
    properties: Optional[Dict[str, Any]] = None,
    required: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties or {},
                "required": required or [],
            },
        },
    }


_PLAN_ID = {"type": "string", "description": "Plan id (defaults to the open plan)"}
_POINT_ID = {"type": "string", "description": "Plan point id"}
_COMMENT = {"type": "string", "description": "Comment stored with the change"}

_POINT_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "Point id, e.g. '1'"},
        "short_name": {"type": "string"},
        "short_description": {"type": "string"},
        "detailed_description": {"type": "string"},
        "review_instructions": {"type": "string"},
        "testing_instructions": {"type": "string"},
        "expected_inputs": {"type": "string"},
        "expected_outputs": {"type": "string"},
        "depends_on": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Ids of points this one depends on, or [\"-1\"] when independent",
        },
        "care_on": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Ids of points whose state should be considered",
        },
    },
    "required": ["id", "short_name", "short_description", "detailed_description", "depends_on"],
}


PLAN_TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    _function(
        "plan_new",
        "Create a new plan and make it the open plan.",
        {
            "name": {"type": "string", "description": "Plan name"},
            "short_description": {"type": "string"},
            "long_description": {"type": "string"},
            "original_request": {"type": "string", "description": "The user's request the plan serves"},
            "plan_id": {"type": "string", "description": "Optional explicit id"},
        },
        ["name"],
    ),
    _function("plan_list", "List all plans with their status."),
    _function("plan_open", "Make an existing plan the open plan.", {"plan_id": _PLAN_ID}, ["plan_id"]),
    _function("plan_show", "Show a plan with its points and status.", {"plan_id": _PLAN_ID}),
    _function(
        "plan_change",
        "Change the name and/or descriptions of a plan.",
        {
            "plan_id": _PLAN_ID,
            "name": {"type": "string"},
            "short_description": {"type": "string"},
            "long_description": {"type": "string"},
        },
    ),
    _function(
        "plan_set_architecture",
        "Set the plan architecture as JSON with 'components' (id, name) and 'connections' (from, to).",
        {
            "plan_id": _PLAN_ID,
            "architecture": {"type": "string", "description": "Architecture JSON"},
        },
        ["architecture"],
    ),
    _function(
        "plan_create_points",
        "Add implementation points to a plan. A point with an existing id replaces it.",
        {"plan_id": _PLAN_ID, "points": {"type": "array", "items": _POINT_SCHEMA}},
        ["points"],
    ),
    _function("plan_reviewed", "Mark the reviewed item of the plan as fine.", {"plan_id": _PLAN_ID, "comment": _COMMENT}),
    _function(
        "plan_need_works",
        "Report problems found in the plan; the plan goes into rework.",
        {
            "plan_id": _PLAN_ID,
            "comments": {"type": "array", "items": {"type": "string"}, "description": "One entry per problem"},
        },
        ["comments"],
    ),
    _function("plan_accepted", "Accept a finished plan.", {"plan_id": _PLAN_ID, "comment": _COMMENT}),
    _function(
        "plan_delete",
        "Delete a plan. Unaccepted plans need force=true after explicit user confirmation.",
        {"plan_id": _PLAN_ID, "force": {"type": "boolean"}},
        ["plan_id"],
    ),
    _function("plan_evaluate", "Report the next step the plan needs.", {"plan_id": _PLAN_ID}),
    _function(
        "plan_point_implemented",
        "Mark a plan point as implemented.",
        {"plan_id": _PLAN_ID, "point_id": _POINT_ID, "comment": _COMMENT},
        ["point_id"],
    ),
    _function(
        "plan_point_reviewed",
        "Mark an implemented plan point as reviewed.",
        {"plan_id": _PLAN_ID, "point_id": _POINT_ID, "comment": _COMMENT},
        ["point_id"],
    ),
    _function(
        "plan_point_tested",
        "Mark an implemented plan point as tested.",
        {"plan_id": _PLAN_ID, "point_id": _POINT_ID, "comment": _COMMENT},
        ["point_id"],
    ),
    _function(
        "plan_point_need_rework",
        "Flag a plan point for rework with the reason.",
        {"plan_id": _PLAN_ID, "point_id": _POINT_ID, "comment": _COMMENT},
        ["point_id", "comment"],
    ),
    _function(
        "plan_point_comment",
        "Attach a comment to a plan point.",
        {"plan_id": _PLAN_ID, "point_id": _POINT_ID, "comment": _COMMENT},
        ["point_id", "comment"],
    ),
    _function(
        "plan_change_point",
        "Update fields of an existing plan point. Only the fields given are changed.",
        {
            "plan_id": _PLAN_ID,
            "point_id": _POINT_ID,
            **{name: spec for name, spec in _POINT_SCHEMA["properties"].items() if name != "id"},
        },
        ["point_id"],
    ),
    _function(
        "plan_point_remove",
        "Remove points from a plan. References to them in other points' depends_on and care_on are dropped.",
        {
            "plan_id": _PLAN_ID,
            "point_ids": {"type": "array", "items": {"type": "string"}, "description": "Ids of the points to remove"},
        },
        ["point_ids"],
    ),
    _function(
        "plan_point_depends_on",
        "Replace the points a point depends on (they must be finished first) and optionally its care-on list.",
        {
            "plan_id": _PLAN_ID,
            "point_id": _POINT_ID,
            "depends_on": _POINT_SCHEMA["properties"]["depends_on"],
            "care_on": _POINT_SCHEMA["properties"]["care_on"],
        },
        ["point_id", "depends_on"],
    ),
    _function(
        "plan_point_care_on",
        "Set the points that should be considered when implementing a point. An empty list clears it.",
        {
            "plan_id": _PLAN_ID,
            "point_id": _POINT_ID,
            "care_on_point_ids": {"type": "array", "items": {"type": "string"}},
        },
        ["point_id", "care_on_point_ids"],
    ),
    _function(
        "plan_point_show",
        "Show selected sections of one plan point.",
        {
            "plan_id": _PLAN_ID,
            "point_id": _POINT_ID,
            "sections": {
                "type": "array",
                "items": {"type": "string", "enum": ["all"] + list(POINT_SECTIONS)},
                "description": "Sections to show; defaults to all",
            },
        },
        ["point_id"],
    ),
    _function("plan_state", "Show point progress counters and pending points of a plan.", {"plan_id": _PLAN_ID}),
    _function("plan_done", "Check whether a plan is complete (accepted).", {"plan_id": _PLAN_ID}),
]

PLAN_TOOL_NAMES = [d["function"]["name"] for d in PLAN_TOOL_DEFINITIONS]
