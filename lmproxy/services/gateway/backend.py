"""Backend gateway: single-turn and streaming calls against the Claude Code agent."""
import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Callable, List, Optional

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, ResultMessage, TextBlock, query

from lmproxy.core.errors import (
    ApiError,
    BackendCallFailedError,
    NoResponseError,
    RequestTimeoutError,
)
from lmproxy.models.backend import (
    AssistantEvent,
    BackendEvent,
    BackendModel,
    BackendRequest,
    BackendResponse,
    OtherEvent,
    ResponseMetadata,
    ResultEvent,
)
from lmproxy.services.gateway.model_resolver import AUTO_MODEL, OPUS_MODEL, SONNET_MODEL, to_sdk_model

logger = logging.getLogger(__name__)

# Produces the backend event sequence for one request
EventSource = Callable[[BackendRequest], AsyncIterator[BackendEvent]]

# Supported models (the backend has no discovery endpoint)
MODEL_INFO: List[BackendModel] = [
    BackendModel(
        id=AUTO_MODEL,
        name="Claude Code Auto",
        description="Automatically selects the best model for the task",
        capabilities=["chat", "code", "tools"],
    ),
    BackendModel(
        id=OPUS_MODEL,
        name="Claude Code Opus",
        description="Most capable model for complex tasks",
        capabilities=["chat", "code", "tools"],
    ),
    BackendModel(
        id=SONNET_MODEL,
        name="Claude Code Sonnet",
        description="Balanced model for general tasks",
        capabilities=["chat", "code", "tools"],
    ),
]


def to_backend_event(message: object) -> BackendEvent:
    """Adapt one SDK message into a backend event variant."""
    if isinstance(message, AssistantMessage):
        texts = [block.text for block in message.content if isinstance(block, TextBlock)]
        return AssistantEvent(texts=texts)
    if isinstance(message, ResultMessage):
        usage = message.usage or {}
        return ResultEvent(
            subtype=message.subtype,
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )
    return OtherEvent(kind=type(message).__name__, payload=message)


async def sdk_event_source(request: BackendRequest) -> AsyncIterator[BackendEvent]:
    """Default event source: one single-turn query through claude-agent-sdk."""
    options = ClaudeAgentOptions(
        model=to_sdk_model(request.model),
        cwd=request.workspace,
        max_turns=1,
        system_prompt=request.context or None,
    )
    async with aclosing(query(prompt=request.message, options=options)) as messages:
        async for message in messages:
            yield to_backend_event(message)


class BackendGateway:
    """Owns the call contract against the backend.

    ``chat``/``complete`` drain the whole event sequence; ``chat_stream`` is a
    lazily pulled async generator. Closing it early closes the event source,
    so no further backend events are requested.
    """

    def __init__(
        self,
        event_source: Optional[EventSource] = None,
        timeout_seconds: float = 30.0,
        workspace: Optional[str] = None,
    ):
        self.event_source = event_source or sdk_event_source
        self.timeout_seconds = timeout_seconds
        self.workspace = workspace
        self._initialized = False

    async def initialize(self) -> None:
        logger.info(f"Initializing backend gateway (workspace={self.workspace}, timeout={self.timeout_seconds}s)")
        self._initialized = True
        logger.info("Backend gateway initialized")

    @property
    def is_ready(self) -> bool:
        return self._initialized

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise ApiError(500, "sdk_not_initialized", "Claude Code SDK client is not initialized")

    async def _events(self, request: BackendRequest) -> AsyncIterator[BackendEvent]:
        """Pull events one at a time under a fixed per-call deadline."""
        if request.workspace is None:
            request.workspace = self.workspace
        deadline = asyncio.get_running_loop().time() + self.timeout_seconds
        async with aclosing(self.event_source(request)) as source:
            while True:
                try:
                    async with asyncio.timeout_at(deadline):
                        event = await anext(source)
                except StopAsyncIteration:
                    return
                yield event

    async def chat(self, request: BackendRequest) -> BackendResponse:
        """
        Single-turn call.

        Keeps the last assistant message and the final usage totals.

        Raises:
            NoResponseError: If no assistant message was produced
            RequestTimeoutError: If the deadline expired
            BackendCallFailedError: On any other backend failure
        """
        self.ensure_initialized()
        logger.info(
            f"Sending chat request to backend: session={request.session_id}, "
            f"model={request.model}, message_length={len(request.message)}"
        )

        assistant: Optional[AssistantEvent] = None
        result: Optional[ResultEvent] = None
        try:
            async with aclosing(self._events(request)) as events:
                async for event in events:
                    if isinstance(event, AssistantEvent):
                        assistant = event
                    elif isinstance(event, ResultEvent):
                        if event.is_success:
                            result = event
                    else:
                        logger.debug(f"Ignoring backend event {event.kind}")

            if assistant is None:
                raise NoResponseError()
        except ApiError:
            raise
        except TimeoutError as e:
            raise RequestTimeoutError("Request was aborted") from e
        except Exception as e:
            logger.error(f"Chat request failed: {type(e).__name__}: {e}", exc_info=True)
            raise BackendCallFailedError(str(e) or "Unknown error occurred") from e

        metadata = ResponseMetadata(model=request.model or AUTO_MODEL)
        if result is not None:
            metadata.input_tokens = result.input_tokens
            metadata.output_tokens = result.output_tokens
            metadata.total_tokens = result.total_tokens
        return BackendResponse(content=assistant.text, metadata=metadata)

    async def complete(self, request: BackendRequest) -> BackendResponse:
        """The backend has no completion mode; completions use chat."""
        return await self.chat(request)

    async def chat_stream(self, request: BackendRequest) -> AsyncIterator[BackendResponse]:
        """
        Streaming call.

        Yields one fragment per assistant text block (zero running counts), then
        one empty-content fragment with the cumulative usage on success.
        """
        self.ensure_initialized()
        logger.info(f"Starting streaming chat: session={request.session_id}, model={request.model}")
        model = request.model or AUTO_MODEL

        try:
            async with aclosing(self._events(request)) as events:
                async for event in events:
                    if isinstance(event, AssistantEvent):
                        for text in event.texts:
                            logger.debug(f"Yielding text fragment ({len(text)} chars)")
                            yield BackendResponse(content=text, metadata=ResponseMetadata(model=model))
                    elif isinstance(event, ResultEvent):
                        if event.is_success:
                            yield BackendResponse(
                                content="",
                                metadata=ResponseMetadata(
                                    input_tokens=event.input_tokens,
                                    output_tokens=event.output_tokens,
                                    total_tokens=event.total_tokens,
                                    model=model,
                                ),
                            )
                        else:
                            logger.warning(
                                f"Unexpected result subtype in stream: {event.subtype} (session={request.session_id})"
                            )
                    else:
                        logger.warning(
                            f"Unexpected message type in stream: {event.kind} (session={request.session_id})"
                        )
        except ApiError:
            raise
        except TimeoutError as e:
            raise RequestTimeoutError("Streaming request was aborted") from e
        except Exception as e:
            logger.error(f"Streaming chat failed: {type(e).__name__}: {e}", exc_info=True)
            raise BackendCallFailedError(str(e) or "Streaming error occurred") from e

    async def get_models(self) -> List[BackendModel]:
        """Static model table with a fresh ``created`` timestamp."""
        self.ensure_initialized()
        created = int(time.time())
        return [
            BackendModel(
                id=m.id,
                name=m.name,
                description=m.description,
                capabilities=list(m.capabilities),
                created=created,
            )
            for m in MODEL_INFO
        ]
