"""Backend response translation to OpenAI / LM Studio wire objects."""
import enum
import json
import logging
import math
import random
import re
import time
import uuid
from typing import Any, Dict, Iterator, List, Optional

from lmproxy.core.errors import INTERNAL_ERROR_BODY, ApiError, error_body
from lmproxy.models.backend import BackendModel, BackendResponse, ResponseMetadata
from lmproxy.models.openai import (
    AssistantMessage,
    ChatChoice,
    ChatCompletion,
    ChatCompletionChunk,
    ChunkChoice,
    CompletionChoice,
    LMStudioStats,
    ModelList,
    ModelObjectV0,
    ModelObjectV1,
    TextCompletion,
    Usage,
)

logger = logging.getLogger(__name__)

SYSTEM_FINGERPRINT = "claude-code-lmstudio-api-v1"
MODEL_OWNER = "claude-code"
STREAM_END = "data: [DONE]\n\n"

# Control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def _now() -> int:
    return int(time.time())


def is_lmstudio_path(path: str) -> bool:
    """LM Studio-style endpoints get a ``stats`` block."""
    return "/v1/" in path or "/api/v0/" in path


def usage_from_metadata(metadata: Optional[ResponseMetadata]) -> Usage:
    """Usage passed through verbatim from backend metadata, zero-filled."""
    if metadata is None:
        return Usage()
    return Usage(
        prompt_tokens=metadata.input_tokens or 0,
        completion_tokens=metadata.output_tokens or 0,
        total_tokens=metadata.total_tokens or 0,
    )


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about four characters per token)."""
    return math.ceil(len(text) / 4)


def generate_lmstudio_stats(
    metadata: Optional[ResponseMetadata] = None,
    content: str = "",
) -> LMStudioStats:
    """Build the LM Studio ``stats`` block.

    Compatibility shim only: the backend reports no timings, so any value it
    does not supply is a synthetic estimate, not a measurement. When the
    generation time is unknown it is derived from the output token count
    (estimated from ``content`` if missing) and the tokens-per-second figure.
    """
    tokens_per_second = metadata.tokens_per_second if metadata else None
    time_to_first_token = metadata.time_to_first_token if metadata else None
    generation_time = metadata.generation_time if metadata else None

    if not tokens_per_second:
        tokens_per_second = random.uniform(30, 80)
    if not time_to_first_token:
        time_to_first_token = random.uniform(50, 150)
    if not generation_time:
        output_tokens = (metadata.output_tokens if metadata else None) or estimate_tokens(content)
        if output_tokens:
            generation_time = output_tokens / tokens_per_second * 1000
        else:
            generation_time = random.uniform(500, 2500)

    return LMStudioStats(
        tokens_per_second=tokens_per_second,
        time_to_first_token=time_to_first_token,
        generation_time=generation_time,
        stop_reason="stop",
    )


def sanitize(value: Any) -> Any:
    """Strip control characters from every string in a JSON-like structure."""
    if isinstance(value, str):
        return _CONTROL_CHARS.sub("", value)
    if isinstance(value, list):
        return [sanitize(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize(item) for key, item in value.items()}
    return value


def format_sse(payload: Dict[str, Any]) -> str:
    """Frame one JSON payload as an SSE data event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def format_stream_error(message: str, code: str = "stream_error") -> str:
    """SSE frame reporting a failure after headers were sent."""
    return format_sse(error_body(message, "stream_error", code))


def transform_chat_response(
    response: BackendResponse,
    model: str,
    include_stats: bool = False,
) -> Dict[str, Any]:
    """Wrap a backend response into a ``chat.completion`` object."""
    completion = ChatCompletion(
        id=f"chatcmpl-{uuid.uuid4()}",
        created=_now(),
        model=model,
        choices=[
            ChatChoice(
                index=0,
                message=AssistantMessage(content=response.content),
                finish_reason="stop",
            )
        ],
        usage=usage_from_metadata(response.metadata),
        system_fingerprint=SYSTEM_FINGERPRINT,
        stats=generate_lmstudio_stats(response.metadata, response.content) if include_stats else None,
    )
    logger.debug(f"Transformed chat response {completion.id}: completion_tokens={completion.usage.completion_tokens}")
    return sanitize(completion.to_dict())


def transform_completion_response(
    response: BackendResponse,
    model: str,
    include_stats: bool = False,
) -> Dict[str, Any]:
    """Wrap a backend response into a ``text_completion`` object."""
    completion = TextCompletion(
        id=f"cmpl-{uuid.uuid4()}",
        created=_now(),
        model=model,
        choices=[CompletionChoice(index=0, text=response.content, logprobs=None, finish_reason="stop")],
        usage=usage_from_metadata(response.metadata),
        system_fingerprint=SYSTEM_FINGERPRINT,
        stats=generate_lmstudio_stats(response.metadata, response.content) if include_stats else None,
    )
    logger.debug(f"Transformed completion response {completion.id}")
    return sanitize(completion.to_dict())


class StreamState(str, enum.Enum):
    AWAITING_FIRST = "awaiting_first"
    STREAMING = "streaming"
    DONE = "done"


class ChatStreamTranscoder:
    """Turns backend fragments into ``chat.completion.chunk`` SSE frames.

    One instance per client call. The first emitted chunk carries the
    assistant role; usage-only fragments are held back and reported on the
    final ``finish_reason="stop"`` chunk, followed by the ``[DONE]`` sentinel.
    """

    def __init__(self, model: str):
        self.model = model
        self.state = StreamState.AWAITING_FIRST
        self.last_metadata: Optional[ResponseMetadata] = None
        self.chunk_count = 0

    def _chunk(self, delta: Dict[str, str], finish_reason: Optional[str] = None) -> ChatCompletionChunk:
        return ChatCompletionChunk(
            id=f"chatcmpl-{uuid.uuid4()}",
            created=_now(),
            model=self.model,
            choices=[ChunkChoice(index=0, delta=delta, finish_reason=finish_reason)],
            system_fingerprint=SYSTEM_FINGERPRINT,
        )

    def feed(self, fragment: BackendResponse) -> Optional[str]:
        """Frame for one backend fragment, or None when it is skipped."""
        if self.state is StreamState.DONE:
            raise RuntimeError("Stream already finished")

        if fragment.metadata is not None:
            self.last_metadata = fragment.metadata

        if fragment.is_usage_only:
            return None

        if self.state is StreamState.AWAITING_FIRST:
            delta = {"role": "assistant", "content": fragment.content}
            self.state = StreamState.STREAMING
        else:
            delta = {"content": fragment.content}

        self.chunk_count += 1
        return format_sse(sanitize(self._chunk(delta).to_dict()))

    def finish(self) -> Iterator[str]:
        """Final ``stop`` chunk (with usage when known) and the terminator."""
        if self.state is StreamState.DONE:
            return
        final = self._chunk({"content": ""}, finish_reason="stop")
        if self.last_metadata is not None and self.last_metadata.total_tokens:
            final.usage = usage_from_metadata(self.last_metadata)
        self.state = StreamState.DONE
        yield format_sse(sanitize(final.to_dict()))
        yield STREAM_END


class CompletionStreamTranscoder:
    """Turns backend fragments into streamed ``text_completion`` SSE frames."""

    def __init__(self, model: str):
        self.model = model
        self.state = StreamState.AWAITING_FIRST
        self.last_metadata: Optional[ResponseMetadata] = None

    def _chunk(self, text: str, finish_reason: Optional[str] = None) -> TextCompletion:
        return TextCompletion(
            id=f"cmpl-{uuid.uuid4()}",
            created=_now(),
            model=self.model,
            choices=[CompletionChoice(index=0, text=text, logprobs=None, finish_reason=finish_reason)],
        )

    def feed(self, fragment: BackendResponse) -> Optional[str]:
        if self.state is StreamState.DONE:
            raise RuntimeError("Stream already finished")
        if fragment.metadata is not None:
            self.last_metadata = fragment.metadata
        if fragment.is_usage_only:
            return None
        self.state = StreamState.STREAMING
        return format_sse(sanitize(self._chunk(fragment.content).to_dict()))

    def finish(self) -> Iterator[str]:
        if self.state is StreamState.DONE:
            return
        final = self._chunk("", finish_reason="stop")
        if self.last_metadata is not None and self.last_metadata.total_tokens:
            final.usage = usage_from_metadata(self.last_metadata)
        self.state = StreamState.DONE
        yield format_sse(sanitize(final.to_dict()))
        yield STREAM_END


def transform_models_v1(models: List[BackendModel]) -> Dict[str, Any]:
    """OpenAI v1 model list."""
    created = _now()
    data = [ModelObjectV1(id=m.id, created=m.created or created, owned_by=MODEL_OWNER).model_dump() for m in models]
    logger.debug(f"Transformed models response: {len(data)} models")
    return ModelList(data=data).model_dump()


def model_v0(model: BackendModel) -> Dict[str, Any]:
    """LM Studio v0 model object (constant properties of the backend)."""
    return ModelObjectV0(id=model.id).model_dump()


def transform_models_v0(models: List[BackendModel]) -> Dict[str, Any]:
    """LM Studio v0 model list."""
    data = [model_v0(m) for m in models]
    logger.debug(f"Transformed LM Studio v0 models response: {len(data)} models")
    return ModelList(data=data).model_dump()


def transform_error(error: Exception) -> Dict[str, Any]:
    """Error body for an exception; non-API errors never expose details."""
    if isinstance(error, ApiError):
        return error.to_dict()
    return INTERNAL_ERROR_BODY
