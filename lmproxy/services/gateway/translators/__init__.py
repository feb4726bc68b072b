"""Request/response translators between the client protocol and the backend."""
from lmproxy.services.gateway.translators.request import (
    RequestTransformer,
    validate_chat_request,
    validate_completion_request,
)
from lmproxy.services.gateway.translators.response import (
    ChatStreamTranscoder,
    CompletionStreamTranscoder,
)

__all__ = [
    "RequestTransformer",
    "validate_chat_request",
    "validate_completion_request",
    "ChatStreamTranscoder",
    "CompletionStreamTranscoder",
]
