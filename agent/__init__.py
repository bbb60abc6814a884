"""
Agent package - conversation and tool orchestration.

This package contains the coding agent split into logical modules:
- events: AgentEvent data type
- merge: stream delta merging and tool-call normalization
- execution: the tool-call loop
- history: request windowing and tool-result repair
- context: transcript and turn state
- modes: mode configuration and resolution
- prompts: default modes and plan prompt templates
- plan: Plan and PlanPoint data model
- planning: plan state machine (evaluation and done callbacks)
- algorithms: strategy table for algorithm-driven modes
- core: Main CodingAgent class
"""

# Core classes and data types
from .core import CodingAgent, AgentBusyError
from .events import AgentEvent

# Mixins
from .context import ContextMixin
from .execution import ExecutionMixin
from .history import HistoryMixin, repair_tool_sequence

# Streaming
from .merge import merge_chunk, merge_stream, finalize_message, normalize_tool_calls

# Modes and algorithms
from .modes import ModeConfig, ModeEngine
from .algorithms import ALGORITHMS, AlgorithmContext, register_algorithm

# Plans
from .plan import Plan, PlanPoint
from .planning import PlanEvaluation, PlanEvaluator, validate_architecture, validate_points

__all__ = [
    # Main agent class
    "CodingAgent",
    "AgentBusyError",

    # Data types
    "AgentEvent",

    # Mixins
    "ContextMixin",
    "ExecutionMixin",
    "HistoryMixin",
    "repair_tool_sequence",

    # Streaming
    "merge_chunk",
    "merge_stream",
    "finalize_message",
    "normalize_tool_calls",

    # Modes and algorithms
    "ModeConfig",
    "ModeEngine",
    "ALGORITHMS",
    "AlgorithmContext",
    "register_algorithm",

    # Plans
    "Plan",
    "PlanPoint",
    "PlanEvaluation",
    "PlanEvaluator",
    "validate_architecture",
    "validate_points",
]
