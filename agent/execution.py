"""
Tool-call loop for the coding agent.
Executes the tool calls of an assistant message, feeds the results back to
the model and repeats until the model stops asking for tools.
"""

import json
import logging
from typing import Any, Dict, List

from llm_service import ChatRequest, LLMAbortedError, LLMError
from messages import ConversationMessage, ToolCallRecord, error_message, tool_message

from .events import AgentEvent, EventCallback, _discard_event
from .merge import normalize_tool_calls

logger = logging.getLogger(__name__)


class ExecutionMixin:
    """Mixin providing the tool-call loop.

    Expects the host class to provide:
    - self.service (LLMService)
    - self.tools (ToolRegistry)
    - self.max_iterations (int)
    - self._interrupted (bool) and self._abort_event via ContextMixin
    - self._append() via ContextMixin
    - self._log_exchange() via core
    """

    async def run_tool_loop(
        self,
        assistant_message: ConversationMessage,
        conversation: List[Dict[str, Any]],
        request: ChatRequest,
        on_event: EventCallback = _discard_event,
    ) -> List[ConversationMessage]:
        """
        Run tool rounds for ``assistant_message``, which is already in the
        transcript. ``conversation`` is the message list of the request that
        produced it. Returns the messages the loop appended.
        """
        produced: List[ConversationMessage] = []

        def keep(message: ConversationMessage) -> ConversationMessage:
            self._append(message)
            produced.append(message)
            return message

        tool_calls = normalize_tool_calls(assistant_message.tool_calls)
        assistant_message.tool_calls = tool_calls
        working = list(conversation) + [assistant_message.to_api()]
        rounds = 0

        while tool_calls:
            if rounds >= self.max_iterations:
                msg = keep(error_message(
                    f"Tool call process stopped after {self.max_iterations} iterations "
                    f"to prevent infinite loops."
                ))
                logger.warning(f"Tool loop hit the iteration cap ({self.max_iterations})")
                await on_event(AgentEvent(type="error", content=msg.content, data={"reason": "iteration_limit"}))
                break
            rounds += 1

            for tool_call in tool_calls:
                if self._interrupted:
                    logger.info("Tool loop interrupted before tool execution")
                    return produced
                result = keep(await self._execute_tool_call(tool_call, on_event))
                working.append(result.to_api())

            if self._interrupted:
                logger.info("Tool loop interrupted before follow-up request")
                return produced

            follow_up = ChatRequest(
                model=request.model,
                messages=list(working),
                temperature=request.temperature,
                top_p=request.top_p,
                tools=request.tools,
            )
            try:
                response = await self.service.generate_response(follow_up, abort=self._abort_event)
            except LLMAbortedError:
                logger.info("Follow-up request aborted")
                return produced
            except LLMError as e:
                msg = keep(error_message(f"Error in follow-up response (iteration {rounds}): {e}"))
                logger.error(msg.content)
                self._log_exchange(follow_up, None, {"phase": "follow_up", "iteration": rounds, "error": str(e)})
                await on_event(AgentEvent(type="error", content=msg.content))
                break

            self._log_exchange(follow_up, response, {"phase": "follow_up", "iteration": rounds})
            if self._interrupted:
                logger.info("Tool loop interrupted after follow-up response")
                return produced

            response.tool_calls = normalize_tool_calls(response.tool_calls)
            keep(response)
            working.append(response.to_api())
            if response.content:
                await on_event(AgentEvent(type="content", content=response.content, data={"message_id": response.id}))
            if response.tool_calls:
                await on_event(AgentEvent(
                    type="tool_calls",
                    content=", ".join(tc.function.name for tc in response.tool_calls),
                    data={"tool_calls": [tc.to_dict() for tc in response.tool_calls]},
                ))
            tool_calls = response.tool_calls

        return produced

    async def _execute_tool_call(self, tool_call: ToolCallRecord, on_event: EventCallback) -> ConversationMessage:
        """Run one tool call and wrap the outcome as a tool-role message."""
        name = tool_call.function.name
        await on_event(AgentEvent(
            type="tool_call",
            content=name,
            data={"id": tool_call.id, "arguments": tool_call.function.arguments},
        ))

        success = False
        try:
            arguments = json.loads(tool_call.function.arguments)
            if not isinstance(arguments, dict):
                raise ValueError("arguments must be a JSON object")
        except ValueError as e:
            content = f"Error parsing tool arguments: {e}"
            logger.warning(f"{name}: {content}")
        else:
            result = await self.tools.execute(name, arguments)
            success = result.success
            content = result.content if result.success else f"Error: {result.error}"
            logger.info(f"Tool {name} {'succeeded' if success else 'failed'}")

        await on_event(AgentEvent(
            type="tool_result",
            content=content,
            data={"id": tool_call.id, "name": name, "success": success},
        ))
        return tool_message(tool_call.id, name, content)
