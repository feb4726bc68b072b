"""Client request validation and translation to the backend request shape."""
import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from lmproxy.core.errors import InvalidRequestError
from lmproxy.models.backend import BackendRequest
from lmproxy.models.openai import ChatCompletionRequest, ChatMessage, CompletionRequest
from lmproxy.services.gateway.model_resolver import ModelResolver

logger = logging.getLogger(__name__)

VALID_ROLES = ("system", "user", "assistant")


def _is_number(value: Any) -> bool:
    # NaN and Infinity are accepted by the JSON parser but are not usable values
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _validate_sampling_params(request: Dict[str, Any]) -> None:
    """Validate stream, temperature and max_tokens (shared by chat and completion)."""
    stream = request.get("stream")
    if stream is not None and not isinstance(stream, bool):
        raise InvalidRequestError("Stream must be a boolean")

    temperature = request.get("temperature")
    if temperature is not None:
        if not _is_number(temperature) or temperature < 0 or temperature > 2:
            raise InvalidRequestError("Temperature must be between 0 and 2")

    max_tokens = request.get("max_tokens")
    if max_tokens is not None:
        if not _is_number(max_tokens):
            raise InvalidRequestError(f"Max tokens must be a number: {max_tokens}")
        # Negative values mean "unlimited" (LM Studio); 0 and fractions below 1 are invalid
        if 0 <= max_tokens < 1:
            raise InvalidRequestError(
                f"Max tokens must be a positive integer or -1 for unlimited: {max_tokens}"
            )


def _parse(model_cls, request: Dict[str, Any]):
    """Build the request model; any field pydantic still rejects is a client error."""
    try:
        return model_cls.model_validate(request)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvalidRequestError(f"Invalid value for {location}: {first['msg']}") from e


def validate_chat_request(request: Any) -> ChatCompletionRequest:
    """Validate a raw chat request body and return the parsed model.

    Raises:
        InvalidRequestError: On any missing or out-of-range field
    """
    if not isinstance(request, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    if not request.get("model") or not isinstance(request["model"], str):
        raise InvalidRequestError("Model is required")

    messages = request.get("messages")
    if not isinstance(messages, list):
        raise InvalidRequestError("Messages must be an array")
    if len(messages) == 0:
        raise InvalidRequestError("Messages array cannot be empty")

    for message in messages:
        if not isinstance(message, dict) or message.get("role") not in VALID_ROLES:
            raise InvalidRequestError("Invalid message role")
        if not isinstance(message.get("content"), str):
            raise InvalidRequestError("Message content must be a string")

    _validate_sampling_params(request)

    return _parse(ChatCompletionRequest, request)


def validate_completion_request(request: Any) -> CompletionRequest:
    """Validate a raw legacy completion request body and return the parsed model."""
    if not isinstance(request, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    if not request.get("model") or not isinstance(request["model"], str):
        raise InvalidRequestError("Model is required")

    prompt = request.get("prompt")
    if not isinstance(prompt, str):
        raise InvalidRequestError("Prompt must be a string")
    if len(prompt) == 0:
        raise InvalidRequestError("Prompt cannot be empty")

    _validate_sampling_params(request)

    return _parse(CompletionRequest, request)


class RequestTransformer:
    """Converts client requests into single-prompt backend requests."""

    def __init__(self, resolver: ModelResolver, workspace: Optional[str] = None):
        self.resolver = resolver
        self.workspace = workspace

    def transform_chat_request(
        self,
        request: ChatCompletionRequest,
        session_id: Optional[str] = None,
    ) -> BackendRequest:
        """
        Flatten chat history into one backend prompt plus context.

        Temperature and max_tokens have no backend equivalent and are not forwarded.

        Args:
            request: Validated chat request
            session_id: Session id passed through to the backend

        Returns:
            BackendRequest
        """
        message = format_messages(request.messages)
        model = self.resolver.resolve(request.model)

        backend_request = BackendRequest(
            message=message,
            context=extract_context(request.messages),
            session_id=session_id,
            model=model,
            workspace=self.workspace,
        )

        logger.debug(
            f"Transformed chat request: client_model={request.model}, "
            f"backend_model={model}, messages={len(request.messages)}"
        )
        return backend_request

    def transform_completion_request(
        self,
        request: CompletionRequest,
        session_id: Optional[str] = None,
    ) -> BackendRequest:
        """Pass the prompt through verbatim; completions carry no context."""
        model = self.resolver.resolve(request.model)

        logger.debug(
            f"Transformed completion request: client_model={request.model}, "
            f"backend_model={model}, prompt_length={len(request.prompt)}"
        )
        return BackendRequest(
            message=request.prompt,
            session_id=session_id,
            model=model,
            workspace=self.workspace,
        )


def format_messages(messages: List[ChatMessage]) -> str:
    """Last user message, prefixed by the newline-joined system messages."""
    if not messages:
        raise InvalidRequestError("Messages array cannot be empty")

    user_message = None
    for message in reversed(messages):
        if message.role == "user":
            user_message = message.content
            break

    if user_message is None:
        raise InvalidRequestError("No user message found in messages array")

    system_messages = [m.content for m in messages if m.role == "system"]
    if system_messages:
        return "\n".join(system_messages) + "\n\n" + user_message
    return user_message


def extract_context(messages: List[ChatMessage]) -> str:
    """Every message except the last, as "ROLE: content" blocks."""
    return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in messages[:-1])
