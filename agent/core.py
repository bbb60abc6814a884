"""
Main CodingAgent class that runs one user turn against the chat endpoint.
Inherits the tool loop from ExecutionMixin, request building from
HistoryMixin and transcript state from ContextMixin.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config import app_config, endpoint_config
from llm_service import ChatRequest, LLMAbortedError, LLMError, LLMService
from messages import ConversationMessage, error_message
from request_log import CommunicationLogger

from .algorithms import ALGORITHMS, AlgorithmContext
from .context import ContextMixin
from .events import AgentEvent, EventCallback, _discard_event
from .execution import ExecutionMixin
from .history import HistoryMixin
from .merge import finalize_message, merge_chunk, normalize_tool_calls
from .modes import ModeConfig, ModeEngine

if TYPE_CHECKING:
    from tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentBusyError(RuntimeError):
    """Raised when a turn is submitted while another one is running"""
    pass


class CodingAgent(ExecutionMixin, HistoryMixin, ContextMixin):
    """
    Orchestrates one conversation.

    Flow:
    1. User sends a message
    2. Agent resolves the active mode and sends system prompt + recent history
       + the message, with the mode's allowed tools
    3. The response is streamed and merged, or read in one piece
    4. If it asks for tools: run the tool loop until the model stops
    5. If a plan is open: evaluate it and submit the corrective follow-up turn,
       bounded by max_iterations
    """

    def __init__(
        self,
        service: LLMService,
        tools: "ToolRegistry",
        modes: ModeEngine,
        planner=None,
        comm_log: Optional[CommunicationLogger] = None,
        model: Optional[str] = None,
        max_iterations: int = app_config.max_tool_iterations,
        history_window: int = app_config.history_window,
        streaming: Optional[bool] = None,
        plan_followups: bool = app_config.plan_followup_enabled,
        plan_implementation: bool = app_config.plan_implementation_enabled,
    ):
        self.service = service
        self.tools = tools
        self.modes = modes
        self.planner = planner
        self.comm_log = comm_log
        self.model = model or endpoint_config.model
        self.max_iterations = max_iterations
        self.history_window = history_window
        self.streaming = endpoint_config.streaming if streaming is None else streaming
        self.temperature = endpoint_config.temperature
        self.top_p = endpoint_config.top_p
        self.plan_followups = plan_followups
        self.plan_implementation = plan_implementation

        super().__init__()

    def set_mode(self, name: str) -> ModeConfig:
        return self.modes.set_mode(name)

    # ------------------------------------------------------------------
    # Turn entry point
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        user_message: str,
        on_event: Optional[EventCallback] = None,
        mode: Optional[str] = None,
    ) -> List[ConversationMessage]:
        """Run one user turn. Returns the messages it added after the user message."""
        if self._busy:
            raise AgentBusyError("A turn is already in progress for this conversation")
        self._busy = True
        self._reset_turn_state()
        on_event = on_event or _discard_event
        try:
            mode_config = self.modes.resolve(mode)
            if mode_config.algorithm:
                return await self._run_algorithm(mode_config, user_message, on_event)

            produced = await self._submit(user_message, mode_config, on_event)
            if self._plan_followups_active() and self._turn_succeeded(produced):
                produced.extend(await self.run_plan_cycle(on_event))
            return produced
        finally:
            self._busy = False

    async def _submit(self, text: str, mode: ModeConfig, on_event: EventCallback) -> List[ConversationMessage]:
        self._append(ConversationMessage(role="user", content=text))
        return await self._run_turn(mode, on_event)

    async def _run_turn(self, mode: ModeConfig, on_event: EventCallback) -> List[ConversationMessage]:
        request = ChatRequest(
            model=self.model,
            messages=self._build_messages(mode.system_message),
            temperature=mode.temperature if mode.temperature is not None else self.temperature,
            top_p=mode.top_p if mode.top_p is not None else self.top_p,
            tools=self.tools.definitions(mode.allowed_tools),
        )
        streaming = mode.streaming if mode.streaming is not None else self.streaming
        logger.info(
            f"Turn in mode {mode.name}: {len(request.messages)} messages, "
            f"{len(request.tools)} tools, streaming={streaming}"
        )

        if streaming:
            message = await self._stream_response(request, mode, on_event)
        else:
            message = await self._complete_response(request, mode, on_event)

        if message is None:
            return []
        if message.role == "error" or self._interrupted or not message.tool_calls:
            return [message]
        return [message] + await self.run_tool_loop(message, request.messages, request, on_event)

    # ------------------------------------------------------------------
    # Response paths
    # ------------------------------------------------------------------

    async def _stream_response(
        self,
        request: ChatRequest,
        mode: ModeConfig,
        on_event: EventCallback,
    ) -> ConversationMessage:
        message = self._append(ConversationMessage(role="assistant", model=request.model, is_streaming=True))
        await on_event(AgentEvent(type="start", data={"message_id": message.id, "mode": mode.name}))

        stream = self.service.generate_response_stream(request, abort=self._abort_event)
        try:
            async for chunk in stream:
                merge_chunk(chunk, message)
                if chunk.content:
                    await on_event(AgentEvent(type="content", content=chunk.content, data={"message_id": message.id}))
                if chunk.reasoning:
                    await on_event(AgentEvent(type="thinking", content=chunk.reasoning, data={"message_id": message.id}))
                if chunk.tool_calls:
                    await on_event(AgentEvent(
                        type="tool_calls",
                        content=", ".join(tc.function.name for tc in message.tool_calls if tc.function.name),
                        data={"message_id": message.id, "count": len(message.tool_calls)},
                    ))
                if self._interrupted:
                    logger.info("Stream interrupted; keeping partial message")
                    break
        except LLMAbortedError:
            logger.info("Stream aborted; keeping partial message")
        except LLMError as e:
            message.role = "error"
            message.content = f"Error: {e}"
            message.tool_calls = []
            message.is_streaming = False
            self._log_exchange(request, None, {"mode": mode.name, "error": str(e)})
            await on_event(AgentEvent(type="error", content=message.content, data={"message_id": message.id}))
            return message
        finally:
            await stream.aclose()

        finalize_message(message)
        self._log_exchange(request, message, {"mode": mode.name, "streaming": True})
        await on_event(AgentEvent(
            type="end",
            content=message.content,
            data={"message_id": message.id, "finish_reason": message.finish_reason},
        ))
        return message

    async def _complete_response(
        self,
        request: ChatRequest,
        mode: ModeConfig,
        on_event: EventCallback,
    ) -> Optional[ConversationMessage]:
        try:
            message = await self.service.generate_response(request, abort=self._abort_event)
        except LLMAbortedError:
            logger.info("Request aborted")
            return None
        except LLMError as e:
            message = self._append(error_message(f"Error: {e}"))
            self._log_exchange(request, None, {"mode": mode.name, "error": str(e)})
            await on_event(AgentEvent(type="error", content=message.content))
            return message

        self._log_exchange(request, message, {"mode": mode.name, "streaming": False})
        if self._interrupted:
            logger.info("Turn interrupted; dropping response")
            return None

        message.tool_calls = normalize_tool_calls(message.tool_calls)
        self._append(message)
        await on_event(AgentEvent(type="start", data={"message_id": message.id, "mode": mode.name}))
        if message.reasoning:
            await on_event(AgentEvent(type="thinking", content=message.reasoning, data={"message_id": message.id}))
        if message.content:
            await on_event(AgentEvent(type="content", content=message.content, data={"message_id": message.id}))
        if message.tool_calls:
            await on_event(AgentEvent(
                type="tool_calls",
                content=", ".join(tc.function.name for tc in message.tool_calls),
                data={"message_id": message.id, "count": len(message.tool_calls)},
            ))
        await on_event(AgentEvent(
            type="end",
            content=message.content,
            data={"message_id": message.id, "finish_reason": message.finish_reason},
        ))
        return message

    def _log_exchange(
        self,
        request: ChatRequest,
        response: Optional[ConversationMessage],
        metadata: Dict[str, Any],
    ) -> None:
        """Forward an exchange to the communication log; its failures are swallowed."""
        if self.comm_log is None:
            return
        try:
            self.comm_log.log_exchange(
                request.to_payload(),
                response.to_dict() if response is not None else None,
                metadata,
            )
        except Exception as e:
            logger.debug(f"Communication log failed: {e}")

    # ------------------------------------------------------------------
    # Plan follow-ups
    # ------------------------------------------------------------------

    def _plan_followups_active(self) -> bool:
        return bool(self.plan_followups and self.planner is not None and self.planner.current_plan is not None)

    @staticmethod
    def _turn_succeeded(messages: List[ConversationMessage]) -> bool:
        if not messages or any(m.role == "error" for m in messages):
            return False
        return messages[-1].role == "assistant"

    async def run_plan_cycle(self, on_event: EventCallback = _discard_event) -> List[ConversationMessage]:
        """
        Drive the open plan: evaluate, send the corrective prompt under the
        recommended mode, commit the step when the turn succeeded. Stops when
        the plan is done, a turn fails, or after max_iterations turns.
        """
        produced: List[ConversationMessage] = []
        if self.planner is None:
            return produced

        for turn in range(1, self.max_iterations + 1):
            if self._interrupted:
                return produced
            plan = self.planner.current_plan
            if plan is None:
                return produced

            evaluation = self.planner.evaluate(plan.id, completion=self.plan_implementation)
            if evaluation.is_done:
                logger.info(f"Plan {plan.id} needs no further steps")
                await on_event(AgentEvent(type="notice", content=evaluation.reason, data={"plan_id": plan.id, "done": True}))
                return produced

            mode = self.modes.resolve(evaluation.recommended_mode)
            logger.info(f"Plan {plan.id} step {evaluation.failed_step} -> {mode.name} (follow-up {turn})")
            await on_event(AgentEvent(
                type="plan_step",
                content=evaluation.failed_step or "",
                data={**evaluation.to_dict(), "plan_id": plan.id, "mode": mode.name, "turn": turn},
            ))

            turn_messages = await self._submit(evaluation.next_step_prompt or "", mode, on_event)
            produced.extend(turn_messages)
            if self._interrupted:
                return produced

            success = self._turn_succeeded(turn_messages)
            evaluation.commit(success, turn_messages[-1].content if turn_messages else None)
            if not success:
                logger.warning(f"Plan step {evaluation.failed_step} failed; stopping follow-ups")
                return produced

        msg = self._append(error_message(
            f"Plan follow-up stopped after {self.max_iterations} turns to prevent infinite loops."
        ))
        produced.append(msg)
        await on_event(AgentEvent(type="error", content=msg.content, data={"reason": "plan_turn_limit"}))
        return produced

    # ------------------------------------------------------------------
    # Algorithms
    # ------------------------------------------------------------------

    async def _run_algorithm(
        self,
        mode: ModeConfig,
        user_message: str,
        on_event: EventCallback,
    ) -> List[ConversationMessage]:
        start = len(self.messages)
        self._append(ConversationMessage(role="user", content=user_message))
        handler = ALGORITHMS.get(mode.algorithm or "")
        if handler is None:
            msg = self._append(error_message(f"Unknown algorithm '{mode.algorithm}' for mode {mode.name}"))
            await on_event(AgentEvent(type="error", content=msg.content))
            return self.messages[start + 1:]

        context = AlgorithmContext(agent=self, mode=mode, on_event=on_event)
        try:
            reply = await handler(user_message, context)
        except Exception as e:
            logger.exception(f"Algorithm {mode.algorithm} failed")
            msg = self._append(error_message(f"Error in {mode.algorithm} algorithm: {e}"))
            await on_event(AgentEvent(type="error", content=msg.content))
        else:
            last = self.messages[-1] if self.messages else None
            # send() already recorded a reply that is passed through unchanged
            if reply and not (last is not None and last.role == "assistant" and last.content == reply):
                final = self._append(ConversationMessage(role="assistant", content=reply, model=self.model))
                await on_event(AgentEvent(type="end", content=final.content, data={"message_id": final.id}))
        return self.messages[start + 1:]

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> List[str]:
        return await self.service.list_models()

    def set_model(self, model: str) -> None:
        self.model = model
        logger.info(f"Model set to {model}")
