"""OpenAI / LM Studio wire models."""
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


# --- Requests ---

class ChatMessage(BaseModel):
    """Chat message model."""
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    """Chat completion request model (validated before construction)."""
    model_config = ConfigDict(extra="ignore")

    model: str = Field(..., description="Model identifier")
    messages: List[ChatMessage] = Field(..., description="List of messages")
    temperature: Optional[float] = Field(None, description="Sampling temperature (validated, not forwarded)")
    max_tokens: Optional[Union[int, float]] = Field(None, description="Maximum tokens; negative means unlimited")
    stream: Optional[bool] = Field(False, description="Whether to stream the response")


class CompletionRequest(BaseModel):
    """Legacy text completion request model."""
    model_config = ConfigDict(extra="ignore")

    model: str = Field(..., description="Model identifier")
    prompt: str = Field(..., description="Prompt text")
    temperature: Optional[float] = None
    max_tokens: Optional[Union[int, float]] = None
    stream: Optional[bool] = False


# --- Responses ---

class WireModel(BaseModel):
    """Base for response objects; fields in ``omit_if_none`` are dropped when unset."""
    omit_if_none: ClassVar[Tuple[str, ...]] = ()

    def to_dict(self) -> Dict[str, Any]:
        exclude = {name for name in self.omit_if_none if getattr(self, name) is None}
        return self.model_dump(exclude=exclude)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LMStudioStats(BaseModel):
    """LM Studio ``stats`` block; synthetic unless the backend reports timings."""
    tokens_per_second: float
    time_to_first_token: float
    generation_time: float
    stop_reason: str = "stop"


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str


class ChatChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: Optional[str] = "stop"


class ChatCompletion(WireModel):
    omit_if_none = ("stats",)

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatChoice]
    usage: Usage
    system_fingerprint: str
    stats: Optional[LMStudioStats] = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: Dict[str, str]
    finish_reason: Optional[str] = None


class ChatCompletionChunk(WireModel):
    omit_if_none = ("usage",)

    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: List[ChunkChoice]
    system_fingerprint: str
    usage: Optional[Usage] = None


class CompletionChoice(BaseModel):
    index: int = 0
    text: str
    logprobs: Optional[Any] = None
    finish_reason: Optional[str] = "stop"


class TextCompletion(WireModel):
    omit_if_none = ("stats", "usage", "system_fingerprint")

    id: str
    object: str = "text_completion"
    created: int
    model: str
    choices: List[CompletionChoice]
    usage: Optional[Usage] = None
    system_fingerprint: Optional[str] = None
    stats: Optional[LMStudioStats] = None


class ModelObjectV1(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str = "claude-code"


class ModelObjectV0(BaseModel):
    id: str
    object: str = "model"
    type: str = "llm"
    publisher: str = "anthropic"
    arch: str = "claude"
    compatibility_type: str = "mlx"
    quantization: str = "8bit"
    state: str = "loaded"
    max_context_length: int = 200000
    loaded_context_length: int = 200000


class ModelList(BaseModel):
    object: str = "list"
    data: List[Dict[str, Any]]
