"""Backend-side data models (requests, responses, events, sessions)."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union


@dataclass
class BackendRequest:
    """Single-turn backend request. Built fresh per call; not retained."""
    message: str  # Flattened prompt
    context: Optional[str] = None  # Prior turns rendered as "ROLE: content" blocks
    session_id: Optional[str] = None
    model: Optional[str] = None  # Resolved backend model id (None = backend default)
    workspace: Optional[str] = None


@dataclass
class ResponseMetadata:
    """Token usage reported by the backend, passed through verbatim."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    model: Optional[str] = None
    tokens_per_second: Optional[float] = None
    time_to_first_token: Optional[float] = None
    generation_time: Optional[float] = None


@dataclass
class BackendResponse:
    """A complete backend answer, or one streamed fragment of it."""
    content: str
    metadata: Optional[ResponseMetadata] = None

    @property
    def is_usage_only(self) -> bool:
        """Terminal usage fragment: no content, positive token total."""
        return not self.content and bool(self.metadata and self.metadata.total_tokens)


# Backend events: closed set of variants produced by the event source adapter.

@dataclass
class AssistantEvent:
    """Assistant-authored message; one entry per text block."""
    texts: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.texts)


@dataclass
class ResultEvent:
    """Terminal result with cumulative usage."""
    subtype: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def is_success(self) -> bool:
        return self.subtype == "success"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class OtherEvent:
    """Any other backend message type (system, user/tool echo, ...)."""
    kind: str
    payload: Optional[object] = None


BackendEvent = Union[AssistantEvent, ResultEvent, OtherEvent]


@dataclass
class Session:
    """Opaque continuity token handed to the backend."""
    id: str
    created_at: datetime
    last_used_at: datetime
    workspace: Optional[str] = None


@dataclass
class BackendModel:
    """Supported backend model descriptor."""
    id: str
    name: str
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    created: int = 0
