"""Translation controller: client protocol <-> backend gateway."""
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from lmproxy.core.errors import ApiError, ModelNotFoundError, NotImplementedApiError
from lmproxy.models.backend import BackendRequest
from lmproxy.services.gateway.backend import BackendGateway
from lmproxy.services.gateway.translators import response as responses
from lmproxy.services.gateway.translators.request import (
    RequestTransformer,
    validate_chat_request,
    validate_completion_request,
)
from lmproxy.services.gateway.translators.response import (
    ChatStreamTranscoder,
    CompletionStreamTranscoder,
    format_stream_error,
    is_lmstudio_path,
)
from lmproxy.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

EMBEDDINGS_NOT_SUPPORTED = "The embeddings endpoint is not supported by Claude Code proxy"

# Polled between fragments; True once the client went away
DisconnectCheck = Callable[[], Awaitable[bool]]

Transcoder = Union[ChatStreamTranscoder, CompletionStreamTranscoder]


@dataclass
class PreparedCall:
    """A validated client request bound to a session and ready for the backend."""
    client_model: str
    stream: bool
    session_id: str
    backend_request: BackendRequest


class TranslationController:
    """Drives one client call: validate, resolve session, call backend, translate back."""

    def __init__(
        self,
        sessions: SessionRegistry,
        request_transformer: RequestTransformer,
        gateway: BackendGateway,
    ):
        self.sessions = sessions
        self.request_transformer = request_transformer
        self.gateway = gateway

    def prepare_chat(self, body: Any, session_header: Optional[str] = None) -> PreparedCall:
        """Validate a chat body and translate it; raises InvalidRequestError."""
        request = validate_chat_request(body)
        # Translate before touching the registry so rejected bodies create no session
        backend_request = self.request_transformer.transform_chat_request(request)
        session_id = self.sessions.resolve(session_header)
        backend_request.session_id = session_id
        return PreparedCall(
            client_model=request.model,
            stream=bool(request.stream),
            session_id=session_id,
            backend_request=backend_request,
        )

    def prepare_completion(self, body: Any, session_header: Optional[str] = None) -> PreparedCall:
        """Validate a legacy completion body and translate it."""
        request = validate_completion_request(body)
        session_id = self.sessions.resolve(session_header)
        backend_request = self.request_transformer.transform_completion_request(request, session_id)
        return PreparedCall(
            client_model=request.model,
            stream=bool(request.stream),
            session_id=session_id,
            backend_request=backend_request,
        )

    async def chat(self, call: PreparedCall, path: str) -> Dict[str, Any]:
        """Non-streaming chat completion."""
        result = await self.gateway.chat(call.backend_request)
        return responses.transform_chat_response(
            result, call.client_model, include_stats=is_lmstudio_path(path)
        )

    async def complete(self, call: PreparedCall, path: str) -> Dict[str, Any]:
        """Non-streaming legacy completion."""
        result = await self.gateway.complete(call.backend_request)
        return responses.transform_completion_response(
            result, call.client_model, include_stats=is_lmstudio_path(path)
        )

    def stream_chat(
        self,
        call: PreparedCall,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[str]:
        """SSE frames for a streaming chat completion."""
        self.gateway.ensure_initialized()
        return self._stream(call, ChatStreamTranscoder(call.client_model), is_disconnected)

    def stream_completion(
        self,
        call: PreparedCall,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[str]:
        """SSE frames for a streaming legacy completion."""
        self.gateway.ensure_initialized()
        return self._stream(call, CompletionStreamTranscoder(call.client_model), is_disconnected)

    async def _stream(
        self,
        call: PreparedCall,
        transcoder: Transcoder,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AsyncIterator[str]:
        upstream = self.gateway.chat_stream(call.backend_request)
        try:
            async for fragment in upstream:
                if is_disconnected is not None and await is_disconnected():
                    logger.info(f"Client disconnected, stopping stream (session={call.session_id})")
                    return
                frame = transcoder.feed(fragment)
                if frame is not None:
                    yield frame
            for frame in transcoder.finish():
                yield frame
            logger.info(f"Stream completed (session={call.session_id})")
        except ApiError as e:
            logger.error(f"Streaming error: {e.code}: {e.message} (session={call.session_id})")
            yield format_stream_error(e.message, e.code)
        except Exception as e:
            logger.error(f"Unexpected streaming error: {type(e).__name__}: {e}", exc_info=True)
            yield format_stream_error("Internal server error", "internal_error")
        finally:
            # Closes the backend event source when the client went away early
            await upstream.aclose()

    async def list_models(self, lmstudio: bool = False) -> Dict[str, Any]:
        """Model list in LM Studio v0 shape or OpenAI v1 shape."""
        models = await self.gateway.get_models()
        if lmstudio:
            return responses.transform_models_v0(models)
        return responses.transform_models_v1(models)

    async def get_model(self, model_id: str) -> Dict[str, Any]:
        """Single LM Studio v0 model object; raises ModelNotFoundError."""
        for model in await self.gateway.get_models():
            if model.id == model_id:
                return responses.model_v0(model)
        raise ModelNotFoundError(model_id)

    def embeddings(self) -> Dict[str, Any]:
        raise NotImplementedApiError(EMBEDDINGS_NOT_SUPPORTED)
