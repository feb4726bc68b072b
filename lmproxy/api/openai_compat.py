"""OpenAI / LM Studio compatible endpoints.

Every operation is mounted under ``/v1``, ``/api/v0`` and at the root; the
``/api/v0`` model listing uses the LM Studio shape.
"""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse

from lmproxy.api.deps import get_controller
from lmproxy.core.errors import InvalidRequestError
from lmproxy.core.request_context import SESSION_ID_HEADER
from lmproxy.services.gateway.controller import PreparedCall, TranslationController

logger = logging.getLogger(__name__)

router = APIRouter(tags=["openai"])

PREFIXES = ("/v1", "/api/v0", "")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def read_json_body(request: Request) -> Any:
    """Parse the request body; malformed JSON is a client error."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON body on {request.url.path}: {e}")
        raise InvalidRequestError("Invalid JSON in request body") from e


def _stream_response(frames, call: PreparedCall) -> StreamingResponse:
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={**STREAM_HEADERS, SESSION_ID_HEADER: call.session_id},
    )


async def chat_completions(
    request: Request,
    x_session_id: Optional[str] = Header(None, alias=SESSION_ID_HEADER),
    controller: TranslationController = Depends(get_controller),
):
    """Chat completion, streamed as SSE when ``stream`` is true."""
    body = await read_json_body(request)
    call = controller.prepare_chat(body, x_session_id)
    logger.info(f"Chat completion: model={call.client_model}, stream={call.stream}, session={call.session_id}")

    if call.stream:
        return _stream_response(controller.stream_chat(call, request.is_disconnected), call)

    result = await controller.chat(call, request.url.path)
    return JSONResponse(content=result, headers={SESSION_ID_HEADER: call.session_id})


async def completions(
    request: Request,
    x_session_id: Optional[str] = Header(None, alias=SESSION_ID_HEADER),
    controller: TranslationController = Depends(get_controller),
):
    """Legacy text completion."""
    body = await read_json_body(request)
    call = controller.prepare_completion(body, x_session_id)
    logger.info(f"Completion: model={call.client_model}, stream={call.stream}, session={call.session_id}")

    if call.stream:
        return _stream_response(controller.stream_completion(call, request.is_disconnected), call)

    result = await controller.complete(call, request.url.path)
    return JSONResponse(content=result, headers={SESSION_ID_HEADER: call.session_id})


async def embeddings(controller: TranslationController = Depends(get_controller)):
    """Not supported; the body is never read."""
    return controller.embeddings()


async def list_models(request: Request, controller: TranslationController = Depends(get_controller)):
    """Available models."""
    return await controller.list_models(lmstudio=request.url.path.startswith("/api/v0/"))


async def get_model(model_id: str, controller: TranslationController = Depends(get_controller)):
    """Single model in LM Studio v0 shape."""
    return await controller.get_model(model_id)


for prefix in PREFIXES:
    router.add_api_route(f"{prefix}/chat/completions", chat_completions, methods=["POST"])
    router.add_api_route(f"{prefix}/completions", completions, methods=["POST"])
    router.add_api_route(f"{prefix}/embeddings", embeddings, methods=["POST"])
    router.add_api_route(f"{prefix}/models", list_models, methods=["GET"])

router.add_api_route("/api/v0/models/{model_id:path}", get_model, methods=["GET"])
