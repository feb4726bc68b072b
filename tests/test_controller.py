"""Tests for the translation controller, streaming and cancellation."""
import json

import pytest

from lmproxy.core.errors import ApiError, InvalidRequestError, ModelNotFoundError, NotImplementedApiError
from lmproxy.models.backend import AssistantEvent, ResultEvent
from lmproxy.services.gateway.backend import BackendGateway
from lmproxy.services.gateway.controller import TranslationController
from lmproxy.services.gateway.model_resolver import ModelResolver
from lmproxy.services.gateway.translators.request import RequestTransformer
from lmproxy.services.gateway.translators.response import STREAM_END
from lmproxy.services.sessions import SessionRegistry
from tests.conftest import FakeEventSource

CHAT_BODY = {"model": "claude-3-sonnet", "messages": [{"role": "user", "content": "hi"}], "stream": True}


async def make_controller(source, initialize=True):
    gateway = BackendGateway(event_source=source, timeout_seconds=2.0)
    if initialize:
        await gateway.initialize()
    return TranslationController(
        sessions=SessionRegistry(),
        request_transformer=RequestTransformer(ModelResolver()),
        gateway=gateway,
    )


def disconnect_after(checks):
    """is_disconnected stand-in reporting a disconnect on the given check number."""
    state = {"calls": 0}

    async def is_disconnected():
        state["calls"] += 1
        return state["calls"] >= checks

    return is_disconnected


# ===== Preparation =====

@pytest.mark.asyncio
async def test_prepare_chat_creates_session():
    controller = await make_controller(FakeEventSource())
    call = controller.prepare_chat(CHAT_BODY)

    assert call.client_model == "claude-3-sonnet"
    assert call.stream is True
    assert call.session_id in controller.sessions
    assert call.backend_request.session_id == call.session_id
    assert call.backend_request.model == "claude-code-sonnet"


@pytest.mark.asyncio
async def test_prepare_chat_keeps_client_session():
    controller = await make_controller(FakeEventSource())
    call = controller.prepare_chat(CHAT_BODY, session_header="abc")
    assert call.session_id == "abc"
    assert call.backend_request.session_id == "abc"


@pytest.mark.asyncio
async def test_rejected_request_creates_no_session():
    controller = await make_controller(FakeEventSource())
    body = {"model": "m", "messages": [{"role": "system", "content": "sys"}]}

    with pytest.raises(InvalidRequestError):
        controller.prepare_chat(body)

    assert len(controller.sessions) == 0


# ===== Non-streaming =====

@pytest.mark.asyncio
async def test_chat_adds_stats_on_lmstudio_paths():
    controller = await make_controller(FakeEventSource())
    call = controller.prepare_chat(CHAT_BODY)

    with_stats = await controller.chat(call, "/v1/chat/completions")
    without_stats = await controller.chat(call, "/chat/completions")

    assert with_stats["model"] == "claude-3-sonnet"
    assert with_stats["choices"][0]["message"]["content"] == "Hello from Claude"
    assert "stats" in with_stats
    assert "stats" not in without_stats


@pytest.mark.asyncio
async def test_complete():
    controller = await make_controller(FakeEventSource([AssistantEvent(texts=["pass"])]))
    call = controller.prepare_completion({"model": "claude-code-auto", "prompt": "def f():"})

    result = await controller.complete(call, "/api/v0/completions")

    assert result["object"] == "text_completion"
    assert result["choices"][0]["text"] == "pass"
    assert "stats" in result


# ===== Streaming =====

@pytest.mark.asyncio
async def test_stream_chat_full_sequence():
    source = FakeEventSource([
        AssistantEvent(texts=["a", "b", "c"]),
        ResultEvent(subtype="success", input_tokens=1, output_tokens=2),
    ])
    controller = await make_controller(source)
    call = controller.prepare_chat(CHAT_BODY)

    frames = [frame async for frame in controller.stream_chat(call)]

    assert len(frames) == 5
    assert frames[-1] == STREAM_END
    final = json.loads(frames[3][len("data: "):])
    assert final["usage"]["total_tokens"] == 3
    assert source.closed


@pytest.mark.asyncio
async def test_stream_stops_pulling_when_client_disconnects():
    """A disconnect closes the backend event source before it is drained."""
    source = FakeEventSource([AssistantEvent(texts=[f"part {i}"]) for i in range(10)])
    controller = await make_controller(source)
    call = controller.prepare_chat(CHAT_BODY)

    frames = [frame async for frame in controller.stream_chat(call, disconnect_after(2))]

    assert len(frames) == 1
    assert STREAM_END not in frames
    assert source.pulled == 2
    assert source.closed


@pytest.mark.asyncio
async def test_stream_closed_by_consumer_closes_backend():
    """Response body iterator closed early (client went away) also closes the source."""
    source = FakeEventSource([AssistantEvent(texts=[f"part {i}"]) for i in range(10)])
    controller = await make_controller(source)
    call = controller.prepare_chat(CHAT_BODY)

    stream = controller.stream_chat(call)
    first = await stream.__anext__()
    await stream.aclose()

    assert first.startswith("data: ")
    assert source.pulled == 1
    assert source.closed


@pytest.mark.asyncio
async def test_stream_error_frame_after_partial_output():
    source = FakeEventSource([AssistantEvent(texts=["partial"])], error=RuntimeError("backend crashed"))
    controller = await make_controller(source)
    call = controller.prepare_chat(CHAT_BODY)

    frames = [frame async for frame in controller.stream_chat(call)]

    assert len(frames) == 2
    assert json.loads(frames[0][len("data: "):])["choices"][0]["delta"]["content"] == "partial"
    assert json.loads(frames[1][len("data: "):]) == {
        "error": {"message": "backend crashed", "type": "stream_error", "code": "chat_failed"}
    }
    assert STREAM_END not in frames


@pytest.mark.asyncio
async def test_stream_completion():
    source = FakeEventSource([AssistantEvent(texts=["x = 1"])])
    controller = await make_controller(source)
    call = controller.prepare_completion({"model": "m", "prompt": "p", "stream": True})

    frames = [frame async for frame in controller.stream_completion(call)]

    assert frames[-1] == STREAM_END
    assert json.loads(frames[0][len("data: "):])["choices"][0]["text"] == "x = 1"


@pytest.mark.asyncio
async def test_stream_requires_initialized_gateway():
    controller = await make_controller(FakeEventSource(), initialize=False)
    call = controller.prepare_chat(CHAT_BODY)
    with pytest.raises(ApiError):
        controller.stream_chat(call)


# ===== Models and embeddings =====

@pytest.mark.asyncio
async def test_list_models_shapes():
    controller = await make_controller(FakeEventSource())

    v1 = await controller.list_models()
    v0 = await controller.list_models(lmstudio=True)

    assert v1["data"][0]["owned_by"] == "claude-code"
    assert v0["data"][0]["type"] == "llm"


@pytest.mark.asyncio
async def test_get_model():
    controller = await make_controller(FakeEventSource())

    model = await controller.get_model("claude-code-opus")
    assert model["id"] == "claude-code-opus"

    with pytest.raises(ModelNotFoundError) as exc_info:
        await controller.get_model("gpt-4")
    assert exc_info.value.message == "Model gpt-4 not found"


@pytest.mark.asyncio
async def test_embeddings_not_implemented():
    controller = await make_controller(FakeEventSource())
    with pytest.raises(NotImplementedApiError) as exc_info:
        controller.embeddings()
    assert exc_info.value.status_code == 501
