"""Tests for the chat completion transport, against httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from config import EndpointConfig
from llm_service import ChatRequest, LLMAbortedError, LLMError, LLMService, parse_sse_line
from agent.merge import merge_stream


def sse(*frames: str) -> bytes:
    return "".join(f"data: {frame}\n\n" for frame in frames).encode("utf-8")


def make_service(handler, api_key: str = "") -> LLMService:
    endpoint = EndpointConfig(scheme="http", host="llm.local", port=8000, api_key=api_key, model="m")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LLMService(endpoint, client=client)


def request(**kwargs) -> ChatRequest:
    return ChatRequest(model="m", messages=[{"role": "user", "content": "hi"}], **kwargs)


async def collect(service, req, abort=None):
    return [chunk async for chunk in service.generate_response_stream(req, abort=abort)]


def test_payload_omits_empty_options():
    payload = request().to_payload()

    assert "tools" not in payload
    assert "top_p" not in payload
    assert payload["temperature"] == 0.0


def test_parse_sse_line():
    assert parse_sse_line('data: {"a": 1}') == {"a": 1}
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("data: {broken") is None
    assert parse_sse_line("data: [1, 2]") is None
    assert parse_sse_line("event: message") is None


@pytest.mark.asyncio
async def test_stream_yields_chunks_until_done():
    seen = {}

    def handler(req: httpx.Request) -> httpx.Response:
        seen["url"] = str(req.url)
        seen["body"] = json.loads(req.content)
        seen["auth"] = req.headers.get("authorization")
        body = sse(
            json.dumps({"choices": [{"delta": {"content": "Hel"}}]}),
            "{not json",
            json.dumps({"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]}),
            "[DONE]",
            json.dumps({"choices": [{"delta": {"content": "ignored"}}]}),
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    service = make_service(handler, api_key="secret")
    tools = [{"type": "function", "function": {"name": "x", "parameters": {"type": "object"}}}]

    chunks = await collect(service, request(tools=tools))

    assert [c.content for c in chunks] == ["Hel", "lo"]
    assert chunks[-1].finish_reason == "stop"
    assert seen["url"] == "http://llm.local:8000/v1/chat/completions"
    assert seen["body"]["stream"] is True
    assert seen["body"]["tools"] == tools
    assert seen["auth"] == "Bearer secret"


@pytest.mark.asyncio
async def test_streamed_tool_call_fragments_merge():
    frames = [
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c1", "type": "function",
                                                 "function": {"name": "x", "arguments": '{"a":'}}]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "1}"}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
    ]

    def handler(req):
        return httpx.Response(200, content=sse(*[json.dumps(f) for f in frames], "[DONE]"))

    chunks = await collect(make_service(handler), request())
    message = merge_stream(chunks)

    assert [tc.to_dict() for tc in message.tool_calls] == [
        {"id": "c1", "type": "function", "function": {"name": "x", "arguments": '{"a":1}'}}
    ]


@pytest.mark.asyncio
async def test_stream_http_error():
    def handler(req):
        return httpx.Response(500, content=b"model not loaded")

    with pytest.raises(LLMError, match="HTTP 500: model not loaded"):
        await collect(make_service(handler), request())


@pytest.mark.asyncio
async def test_stream_network_error_is_wrapped():
    def handler(req):
        raise httpx.ConnectError("connection refused", request=req)

    with pytest.raises(LLMError, match="connection refused"):
        await collect(make_service(handler), request())


@pytest.mark.asyncio
async def test_stream_abort_before_start():
    abort = asyncio.Event()
    abort.set()

    def handler(req):
        return httpx.Response(200, content=sse("[DONE]"))

    with pytest.raises(LLMAbortedError):
        await collect(make_service(handler), request(), abort=abort)


@pytest.mark.asyncio
async def test_stream_skips_badly_shaped_frames():
    def handler(req):
        body = sse(
            json.dumps({"choices": [{"delta": {"content": "hi"}}]}),
            json.dumps({"choices": [{"delta": "oops"}]}),
            json.dumps({"choices": {"0": {"delta": {"content": "nope"}}}}),
            json.dumps({"choices": [{"delta": {"tool_calls": 5}}]}),
            json.dumps({"choices": ["text"]}),
            json.dumps({"choices": [{"delta": {"content": " there"}}]}),
            "[DONE]",
        )
        return httpx.Response(200, content=body)

    chunks = await collect(make_service(handler), request())

    assert "".join(c.content or "" for c in chunks) == "hi there"
    assert len(chunks) == 2


class StalledStream(httpx.AsyncByteStream):
    """Sends its first bytes, then hangs like a server that stopped responding."""

    def __init__(self, first: bytes = b""):
        self.first = first

    async def __aiter__(self):
        if self.first:
            yield self.first
        await asyncio.sleep(30)
        yield b""


@pytest.mark.asyncio
async def test_stream_abort_cancels_stalled_read():
    def handler(req):
        first = sse(json.dumps({"choices": [{"delta": {"content": "hi"}}]}))
        return httpx.Response(200, stream=StalledStream(first))

    abort = asyncio.Event()
    chunks = []

    async def consume():
        async for chunk in make_service(handler).generate_response_stream(request(), abort=abort):
            chunks.append(chunk)

    asyncio.get_running_loop().call_later(0.2, abort.set)
    with pytest.raises(LLMAbortedError):
        await asyncio.wait_for(consume(), 2)
    assert [c.content for c in chunks] == ["hi"]


@pytest.mark.asyncio
async def test_stream_abort_cancels_stalled_open():
    async def handler(req):
        await asyncio.sleep(30)
        return httpx.Response(200, content=sse("[DONE]"))

    abort = asyncio.Event()
    asyncio.get_running_loop().call_later(0.2, abort.set)

    with pytest.raises(LLMAbortedError):
        await asyncio.wait_for(collect(make_service(handler), request(), abort=abort), 2)


@pytest.mark.asyncio
async def test_non_streaming_response():
    def handler(req):
        assert json.loads(req.content)["stream"] is False
        return httpx.Response(200, json={
            "model": "served-model",
            "choices": [{
                "message": {
                    "role": "assistant",
                    "content": "hello",
                    "reasoning_content": "thinking",
                    "tool_calls": [{"id": "c1", "function": {"name": "x", "arguments": "{}"}}],
                },
                "finish_reason": "tool_calls",
            }],
        })

    message = await make_service(handler).generate_response(request())

    assert message.role == "assistant"
    assert message.content == "hello"
    assert message.reasoning == "thinking"
    assert message.model == "served-model"
    assert message.finish_reason == "tool_calls"
    assert message.tool_calls[0].type == "function"
    assert message.tool_calls[0].is_complete()


@pytest.mark.asyncio
async def test_non_streaming_http_error():
    def handler(req):
        return httpx.Response(401, content=b"unauthorized")

    with pytest.raises(LLMError, match="HTTP 401"):
        await make_service(handler).generate_response(request())


@pytest.mark.asyncio
async def test_non_streaming_malformed_body():
    def handler(req):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(LLMError, match="Malformed response body"):
        await make_service(handler).generate_response(request())


@pytest.mark.asyncio
async def test_non_streaming_null_message():
    def handler(req):
        return httpx.Response(200, json={"choices": [{"message": None}]})

    with pytest.raises(LLMError, match="message must be an object"):
        await make_service(handler).generate_response(request())


@pytest.mark.asyncio
async def test_non_streaming_ignores_badly_typed_fields():
    def handler(req):
        return httpx.Response(200, json={"choices": [{"message": {"content": ["part"], "tool_calls": 5}}]})

    message = await make_service(handler).generate_response(request())

    assert message.content == ""
    assert message.tool_calls == []


@pytest.mark.asyncio
async def test_non_streaming_abort():
    abort = asyncio.Event()
    abort.set()

    def handler(req):
        return httpx.Response(200, json={"choices": [{"message": {"content": "late"}}]})

    with pytest.raises(LLMAbortedError):
        await make_service(handler).generate_response(request(), abort=abort)


@pytest.mark.asyncio
async def test_list_models():
    def handler(req):
        assert req.url.path == "/v1/models"
        return httpx.Response(200, json={"data": [{"id": "llama3.1"}, {"id": "qwen2.5-coder"}]})

    assert await make_service(handler).list_models() == ["llama3.1", "qwen2.5-coder"]


@pytest.mark.asyncio
async def test_list_models_error():
    def handler(req):
        return httpx.Response(404)

    with pytest.raises(LLMError, match="Could not list models"):
        await make_service(handler).list_models()
