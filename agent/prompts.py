"""
Default mode definitions and plan prompt templates.
Templates use <placeholder> tokens that the plan evaluator substitutes.
"""

from typing import Any, Dict, List


# ============================================================
# Tool groups
# ============================================================

PLAN_READ_TOOLS = [
    "plan_list",
    "plan_show",
    "plan_open",
    "plan_evaluate",
    "plan_point_show",
    "plan_state",
    "plan_done",
]

PLAN_AUTHOR_TOOLS = PLAN_READ_TOOLS + [
    "plan_new",
    "plan_change",
    "plan_set_architecture",
    "plan_create_points",
    "plan_change_point",
    "plan_point_remove",
    "plan_point_depends_on",
    "plan_point_care_on",
    "plan_point_comment",
]

PLAN_REVIEW_TOOLS = PLAN_READ_TOOLS + [
    "plan_reviewed",
    "plan_need_works",
    "plan_point_reviewed",
    "plan_point_need_rework",
    "plan_point_comment",
]


# ============================================================
# Modes
# ============================================================

_CODER_PROMPT = """You are an expert software engineer. Implement what is asked with minimal, correct changes.
When you work on a plan point, mark it with plan_point_implemented once the code is in place.
Keep answers short and concrete."""

_ASK_PROMPT = """You answer questions about software and the current plan. You do not change anything.
Use the plan tools only to look things up."""

_ARCHITECT_PROMPT = """You are a software architect. You turn requests into plans: clear descriptions,
a component architecture and small implementation points with explicit dependencies.
Always act through the plan tools; a text-only answer does not change the plan.

Architecture is JSON: {"components": [{"id", "name", ...}], "connections": [{"from", "to", ...}]}.
Every point needs a short name, short and detailed description, review and testing instructions,
expected inputs and outputs, and depends_on (point ids, or "-1" when independent)."""

_REVIEWER_PROMPT = """You are a strict reviewer. Check the requested item against the request and the plan.
If something is wrong, call plan_need_works (or plan_point_need_rework) listing every problem.
If everything is fine, call plan_reviewed (or plan_point_reviewed)."""

_TESTER_PROMPT = """You are a tester. Follow each point's testing instructions and report the outcome.
Mark a passing point with plan_point_tested; otherwise flag it with plan_point_need_rework."""

_APPROVER_PROMPT = """You perform the final acceptance check of a plan. Accept it with plan_accepted only when
every point is implemented, reviewed and tested and the result matches the original request.
Otherwise call plan_need_works with the reasons."""

_ORCHESTRATOR_PROMPT = """You coordinate other modes to carry a request through planning and implementation."""


DEFAULT_MODES: Dict[str, Dict[str, Any]] = {
    "Coder": {
        "description": "Writes and changes code, implements plan points",
        "system_message": _CODER_PROMPT,
        "allowed_tools": PLAN_READ_TOOLS + ["plan_point_implemented", "plan_point_comment"],
    },
    "Ask": {
        "description": "Answers questions without changing anything",
        "system_message": _ASK_PROMPT,
        "allowed_tools": PLAN_READ_TOOLS,
    },
    "Architect": {
        "description": "Creates and reworks plans, architecture and points",
        "system_message": _ARCHITECT_PROMPT,
        "allowed_tools": PLAN_AUTHOR_TOOLS,
    },
    "Reviewer": {
        "description": "Reviews plan descriptions, architecture and implemented points",
        "system_message": _REVIEWER_PROMPT,
        "allowed_tools": PLAN_REVIEW_TOOLS,
    },
    "Tester": {
        "description": "Tests implemented points",
        "system_message": _TESTER_PROMPT,
        "allowed_tools": PLAN_READ_TOOLS + ["plan_point_tested", "plan_point_need_rework", "plan_point_comment"],
    },
    "Approver": {
        "description": "Final acceptance of a finished plan",
        "system_message": _APPROVER_PROMPT,
        "allowed_tools": PLAN_READ_TOOLS + ["plan_accepted", "plan_need_works"],
    },
    "Orchestrator": {
        "description": "Routes a request through plan creation and the plan cycle",
        "system_message": _ORCHESTRATOR_PROMPT,
        "allowed_tools": [],
        "algorithm": "orchestrator",
    },
}


# ============================================================
# Plan creation prompts
# ============================================================

_REVIEW_TAIL = (
    "\n\nIf you find any problem, use the plan_need_works tool to list the problems found. "
    "If everything looks fine and no additional work is needed, use the plan_reviewed tool."
)

PLAN_PROMPTS: Dict[str, str] = {
    "description_update": (
        "Use the plan_change tool to update both descriptions of plan <plan_id>. "
        "Text-only answers are rejected.\n\n"
        "**Original request:** <plan_original_request>\n\n"
        "1. Write a concise short description of what the plan accomplishes\n"
        "2. Write a long description covering every requirement and technical detail\n"
        "3. Call plan_change with both descriptions\n"
        "4. Summarize what you did in two sentences"
    ),
    "description_update_rework": (
        "The descriptions of plan <plan_id> need rework. Fix them and call plan_change again.\n\n"
        "**Problems found:**\n<rework_reason>\n\n"
        "1. Address every problem listed above\n"
        "2. Call plan_change with the corrected descriptions\n"
        "3. Summarize what was fixed"
    ),
    "description_review": "<checklist>" + _REVIEW_TAIL,
    "architecture_creation": (
        "Create the architecture of plan <plan_id> and store it with plan_set_architecture. "
        "Text-only answers are rejected.\n\n"
        "**Original request:** <plan_original_request>\n"
        "**Short description:** <plan_short_description>\n"
        "**Long description:** <plan_long_description>\n\n"
        "The architecture must be JSON with a non-empty \"components\" array (each with \"id\" and \"name\") "
        "and a \"connections\" array (each with \"from\" and \"to\" component ids)."
    ),
    "architecture_creation_rework": (
        "The architecture of plan <plan_id> needs rework. Fix it and call plan_set_architecture again.\n\n"
        "**Problems found:**\n<rework_reason>\n\n"
        "1. Address every problem listed above\n"
        "2. Make sure the JSON format is valid\n"
        "3. Call plan_set_architecture with the corrected architecture"
    ),
    "architecture_review": "<checklist>" + _REVIEW_TAIL,
    "points_creation": (
        "Break plan <plan_id> down into implementation points and add them with plan_create_points. "
        "Text-only answers are rejected.\n\n"
        "**Original request:** <plan_original_request>\n"
        "**Short description:** <plan_short_description>\n"
        "**Long description:** <plan_long_description>\n"
        "**Architecture:** <plan_architecture>"
    ),
    "points_creation_rework": (
        "The points of plan <plan_id> need rework. Fix them with plan_change_point, plan_point_depends_on "
        "or plan_point_remove, or resend them with plan_create_points.\n\n"
        "**Problems found:**\n<rework_reason>\n\n"
        "**Affected points:** <id>"
    ),
    "plan_rework": (
        "Plan <plan_id> needs rework. Update the plan so that the following problems are resolved:\n"
        "<rework_reason>"
    ),
    "creation_complete": (
        "Plan creation completed. Plan <plan_name> has descriptions, an architecture and "
        "<plan_points_count> implementation points and is ready for implementation."
    ),
    # Implementation phase
    "rework": "Please rework the following points of plan <plan_id>: <id>\n\nReason: <reason>",
    "code_review": "Please review the implementation of the following points of plan <plan_id>: <id>",
    "testing": "Please test the following points of plan <plan_id>: <id>",
    "implementation": "Please implement the following points of plan <plan_id>: <id>",
    "plan_review": "<checklist>" + _REVIEW_TAIL,
    "acceptance": "Please perform the final acceptance check of plan <plan_id>.",
    "done": "Plan <plan_name> is done. Nothing has to be done.",
}

RECOMMENDED_MODES: Dict[str, str] = {
    "description_update": "Architect",
    "description_review": "Reviewer",
    "architecture_creation": "Architect",
    "architecture_review": "Reviewer",
    "points_creation": "Architect",
    "rework_fix": "Architect",
    "rework": "Coder",
    "code_review": "Reviewer",
    "testing": "Tester",
    "implementation": "Coder",
    "plan_review": "Reviewer",
    "acceptance": "Approver",
}

# Newline separated; each line is presented and acknowledged separately
REVIEW_CHECKLISTS: Dict[str, str] = {
    "description_review": (
        "Are the short and long descriptions of plan <plan_id> clear and complete?\n"
        "Do the descriptions match the original request: <plan_original_request>?\n"
        "Is the technical scope well defined?"
    ),
    "architecture_review": (
        "Does the architecture of plan <plan_id> cover every requirement of the long description?\n"
        "Are the components and their connections consistent and minimal?"
    ),
    "plan_review": (
        "Is every point of plan <plan_id> implemented as described?\n"
        "Does the implementation as a whole satisfy the original request?"
    ),
}


def parse_checklist(text: str) -> List[str]:
    """Split a checklist configuration into its non-empty items."""
    return [line.strip() for line in (text or "").splitlines() if line.strip()]
