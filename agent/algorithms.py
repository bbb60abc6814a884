"""
Algorithm strategy table.

A mode with an ``algorithm`` key hands its turns to the registered handler
instead of sending them straight to the model. Handlers are plain async
functions ``handle(message, context) -> str`` registered at import time.
"""

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Tuple

from llm_service import ChatRequest, LLMAbortedError
from messages import ConversationMessage

from .events import AgentEvent, EventCallback

if TYPE_CHECKING:
    from .core import CodingAgent
    from .modes import ModeConfig

logger = logging.getLogger(__name__)


@dataclass
class AlgorithmContext:
    """What an algorithm may use: the agent, its mode and the event sink."""
    agent: "CodingAgent"
    mode: "ModeConfig"
    on_event: EventCallback

    @property
    def planner(self):
        return self.agent.planner

    async def send(self, prompt: str, mode: Optional[str] = None) -> str:
        """Run a full turn (tools included) and return the final assistant text."""
        mode_config = self.agent.modes.resolve(mode) if mode else self.mode
        messages = await self.agent._submit(prompt, mode_config, self.on_event)
        for message in reversed(messages):
            if message.role == "assistant":
                return message.content
        return ""

    async def ask(self, prompt: str) -> str:
        """Send a single tool-less request outside the transcript and return the reply text.

        Raises LLMError on transport failure.
        """
        agent = self.agent
        messages = []
        if self.mode.system_message:
            messages.append({"role": "system", "content": self.mode.system_message})
        messages.append({"role": "user", "content": prompt})
        request = ChatRequest(
            model=agent.model,
            messages=messages,
            temperature=self.mode.temperature if self.mode.temperature is not None else agent.temperature,
        )
        reply = await agent.service.generate_response(request, abort=agent._abort_event)
        agent._log_exchange(request, reply, {"mode": self.mode.name, "phase": "algorithm"})
        return reply.content

    async def notice(self, text: str) -> None:
        await self.on_event(AgentEvent(type="notice", content=text))

    async def run_plan_cycle(self) -> List[ConversationMessage]:
        return await self.agent.run_plan_cycle(self.on_event)


AlgorithmHandler = Callable[[str, AlgorithmContext], Awaitable[str]]

ALGORITHMS: Dict[str, AlgorithmHandler] = {}


def register_algorithm(name: str):
    def decorator(func: AlgorithmHandler) -> AlgorithmHandler:
        ALGORITHMS[name] = func
        return func
    return decorator


# ============================================================
# Orchestrator
# ============================================================

_CATEGORIZE_PROMPT = """Classify the user's message into exactly one category:

NEW - a request to build or change something that needs a new plan
OPEN <plan_id> - a request about one of the existing plans listed below
QUESTION - a question that needs an answer, not a plan

Existing plans:
{plans}

User message:
{message}

Respond with ONLY the category (and the plan id for OPEN), nothing else."""

_CATEGORY_RE = re.compile(r"\b(NEW|OPEN|QUESTION)\b(?:\s+([\w.-]+))?", re.IGNORECASE)


def _parse_category(answer: str) -> Tuple[str, Optional[str]]:
    match = _CATEGORY_RE.search(answer or "")
    if not match:
        return "NEW", None
    category = match.group(1).upper()
    plan_id = match.group(2) if category == "OPEN" else None
    return category, plan_id


def _plan_name(message: str) -> str:
    """Plan name from the first words of the request."""
    words = message.strip().split()
    name = " ".join(words[:6])
    if len(words) > 6:
        name += "..."
    return name or "New plan"


@register_algorithm("orchestrator")
async def orchestrate(message: str, context: AlgorithmContext) -> str:
    """Route a message: answer questions, otherwise create or open a plan and drive it."""
    planner = context.planner
    if planner is None:
        return "Planning is not available in this session."

    plans = planner.list_plans()
    listing = "\n".join(f"{p.id}: {p.name} - {p.short_description}" for p in plans) or "(none)"
    try:
        answer = await context.ask(_CATEGORIZE_PROMPT.format(plans=listing, message=message))
    except LLMAbortedError:
        logger.info("Orchestrator aborted while categorizing")
        return ""
    category, plan_id = _parse_category(answer)
    logger.info(f"Orchestrator category: {category} {plan_id or ''}".strip())

    if category == "QUESTION":
        return await context.send(message, mode="Ask")

    known_ids = {p.id for p in plans}
    if category == "OPEN" and plan_id in known_ids:
        planner.set_current_plan(plan_id)
        await context.notice(f"Opened plan {plan_id}")
    else:
        plan = planner.create_plan(name=_plan_name(message), original_request=message)
        await context.notice(f"Created plan {plan.id}")

    await context.run_plan_cycle()

    plan = planner.current_plan
    if plan is None:
        return "The plan is no longer available."
    evaluation = planner.evaluate(plan.id, completion=context.agent.plan_implementation)
    if evaluation.is_done:
        return evaluation.reason
    return (
        f"Plan {plan.id} paused at step {evaluation.failed_step}: {evaluation.reason}. "
        f"Send another message to continue."
    )
