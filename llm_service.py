"""
Chat completion service module.
Handles all interactions with an OpenAI-compatible /v1/chat/completions endpoint,
both as a single JSON response and as a server-sent-event stream.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from messages import ConversationMessage, ToolCallRecord
from config import EndpointConfig, endpoint_config

logger = logging.getLogger(__name__)

_DONE = object()


class LLMError(Exception):
    """Custom exception for chat endpoint errors"""
    pass


class LLMAbortedError(LLMError):
    """Raised when the caller aborts an in-flight request"""
    pass


@dataclass
class ChatRequest:
    """A single chat completion request"""
    model: str
    messages: List[Dict[str, Any]]
    temperature: float = 0.0
    top_p: Optional[float] = None
    tools: List[Dict[str, Any]] = field(default_factory=list)
    stream: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "stream": self.stream,
        }
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        if self.tools:
            payload["tools"] = self.tools
        return payload


@dataclass
class ToolCallDelta:
    """A partial tool call as it arrives in one stream frame.

    Frames without an ``index`` are treated as complete records by the merger.
    """
    index: Optional[int] = None
    id: Optional[str] = None
    type: Optional[str] = None
    function_name: Optional[str] = None
    function_arguments: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "ToolCallDelta":
        if not isinstance(raw, dict):
            raise ValueError(f"tool call delta must be an object, got {type(raw).__name__}")
        index = raw.get("index")
        if index is not None and (isinstance(index, bool) or not isinstance(index, int)):
            raise ValueError(f"tool call index must be an integer, got {index!r}")
        fn = raw.get("function") or {}
        if not isinstance(fn, dict):
            raise ValueError("tool call function must be an object")
        values = {
            "id": raw.get("id"),
            "type": raw.get("type"),
            "function_name": fn.get("name"),
            "function_arguments": fn.get("arguments"),
        }
        for key, value in values.items():
            if value is not None and not isinstance(value, str):
                raise ValueError(f"tool call {key} must be a string, got {type(value).__name__}")
        return cls(index=index, **values)


@dataclass
class StreamChunk:
    """One increment of a streamed completion"""
    content: Optional[str] = None
    reasoning: Optional[str] = None
    tool_calls: List[ToolCallDelta] = field(default_factory=list)
    finish_reason: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "StreamChunk":
        """Build a chunk from one decoded frame. Raises ValueError on a badly shaped frame."""
        choices = data.get("choices")
        if choices is None:
            return cls()
        if not isinstance(choices, list):
            raise ValueError(f"choices must be a list, got {type(choices).__name__}")
        if not choices:
            return cls()
        choice = choices[0]
        if not isinstance(choice, dict):
            raise ValueError(f"choice must be an object, got {type(choice).__name__}")
        delta = choice.get("delta")
        if delta is None:
            delta = choice.get("message")
        if delta is None:
            delta = {}
        if not isinstance(delta, dict):
            raise ValueError(f"delta must be an object, got {type(delta).__name__}")

        raw_calls = delta.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ValueError(f"tool_calls must be a list, got {type(raw_calls).__name__}")
        tool_calls = []
        for raw in raw_calls:
            try:
                tool_calls.append(ToolCallDelta.from_payload(raw))
            except ValueError as e:
                logger.warning(f"Dropping invalid tool call delta: {e}")

        content = delta.get("content")
        reasoning = delta.get("reasoning") or delta.get("reasoning_content")
        finish_reason = choice.get("finish_reason")
        return cls(
            content=content if isinstance(content, str) else None,
            reasoning=reasoning if isinstance(reasoning, str) else None,
            tool_calls=tool_calls,
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )


def parse_sse_line(line: str) -> Any:
    """Decode one SSE line. Returns a dict, the done sentinel, or None to skip."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return _DONE
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping malformed stream frame ({e}): {data[:200]}")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"Skipping non-object stream frame: {data[:200]}")
        return None
    return parsed


async def _next_line(lines: AsyncIterator[str]) -> str:
    return await lines.__anext__()


class LLMService:
    """
    Client for an OpenAI-compatible chat completions endpoint.
    The httpx client can be injected, which is how tests mock the endpoint.
    """

    def __init__(self, endpoint: Optional[EndpointConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint or endpoint_config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.endpoint.timeout)
        logger.info(f"LLM service ready for {self.endpoint.base_url} (model {self.endpoint.model})")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.has_api_key():
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _race_abort(self, coro, abort: Optional[asyncio.Event]):
        """Await ``coro`` unless ``abort`` fires first."""
        if abort is None:
            return await coro
        if abort.is_set():
            coro.close()
            raise LLMAbortedError("Request aborted")
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise LLMAbortedError("Request aborted")

    async def generate_response(
        self,
        request: ChatRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> ConversationMessage:
        """Send a non-streaming request and return the assistant message."""
        request.stream = False
        try:
            response = await self._race_abort(
                self._client.post(
                    self.endpoint.chat_completions_url,
                    json=request.to_payload(),
                    headers=self._headers(),
                ),
                abort,
            )
        except httpx.HTTPError as e:
            logger.error(f"Chat request failed: {e}")
            raise LLMError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Chat endpoint returned HTTP {response.status_code}")
            raise LLMError(f"HTTP {response.status_code}: {response.text[:500]}")

        try:
            body = response.json()
            choice = body["choices"][0]
            message = choice["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed response body: {e}") from e
        if not isinstance(message, dict):
            raise LLMError(f"Malformed response body: message must be an object, got {type(message).__name__}")

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            logger.warning(f"Ignoring tool_calls that is not a list: {raw_calls!r}")
            raw_calls = []
        tool_calls = []
        for raw in raw_calls:
            if not isinstance(raw, dict):
                logger.warning(f"Dropping invalid tool call: {raw!r}")
                continue
            record = ToolCallRecord.from_dict(raw)
            record.type = record.type or "function"
            tool_calls.append(record)

        content = message.get("content")
        reasoning = message.get("reasoning") or message.get("reasoning_content")
        finish_reason = choice.get("finish_reason")
        return ConversationMessage(
            role="assistant",
            content=content if isinstance(content, str) else "",
            reasoning=reasoning if isinstance(reasoning, str) else "",
            tool_calls=tool_calls,
            model=body.get("model") or request.model,
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )

    async def generate_response_stream(
        self,
        request: ChatRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion. Yields StreamChunk objects in arrival order until
        the [DONE] sentinel or the end of the body.

        Opening the response and every read from it are raced against ``abort``,
        so a stalled server cannot hold the caller until the HTTP timeout.
        """
        request.stream = True
        if abort is not None and abort.is_set():
            raise LLMAbortedError("Request aborted")
        http_request = self._client.build_request(
            "POST",
            self.endpoint.chat_completions_url,
            json=request.to_payload(),
            headers=self._headers(),
        )
        try:
            response = await self._race_abort(self._client.send(http_request, stream=True), abort)
        except httpx.HTTPError as e:
            logger.error(f"Chat stream failed: {e}")
            raise LLMError(f"Stream failed: {e}") from e

        try:
            if response.status_code >= 400:
                body = (await self._race_abort(response.aread(), abort)).decode("utf-8", errors="replace")
                logger.error(f"Chat endpoint returned HTTP {response.status_code}")
                raise LLMError(f"HTTP {response.status_code}: {body[:500]}")

            lines = response.aiter_lines()
            while True:
                try:
                    line = await self._race_abort(_next_line(lines), abort)
                except StopAsyncIteration:
                    break
                frame = parse_sse_line(line)
                if frame is None:
                    continue
                if frame is _DONE:
                    break
                try:
                    chunk = StreamChunk.from_payload(frame)
                except ValueError as e:
                    logger.warning(f"Skipping malformed stream frame ({e}): {json.dumps(frame)[:200]}")
                    continue
                yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Chat stream failed: {e}")
            raise LLMError(f"Stream failed: {e}") from e
        finally:
            await response.aclose()

    async def list_models(self) -> List[str]:
        """Return model ids advertised by the endpoint."""
        try:
            response = await self._client.get(self.endpoint.models_url, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise LLMError(f"Could not list models: {e}") from e
        except ValueError as e:
            raise LLMError(f"Malformed models response: {e}") from e
        return [m.get("id", "") for m in data.get("data", []) if isinstance(m, dict)]
