"""Wire models for the Fabric REST API. All models are Pydantic v2 models.

Field names are snake_case in Python and camelCase on the wire; both spellings
are accepted on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class EntityType(str, Enum):
    """Entity kinds managed through the CRUD endpoints."""

    CONTEXT = "context"
    PATTERN = "pattern"
    SESSION = "session"

    @property
    def collection(self) -> str:
        """URL collection segment, e.g. ``patterns``."""
        return f"{self.value}s"


class ChatOptions(_WireModel):
    """Sampling parameters forwarded to the vendor model."""

    model: str = ""
    temperature: float = 0.0
    top_p: float = 0.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    raw: bool = Field(default=False, description="Return raw model output without processing")
    seed: int = 0
    model_context_length: int = 0


class PromptRequest(_WireModel):
    user_input: str
    vendor: str
    model: str
    context_name: str = ""
    pattern_name: str = ""
    strategy_name: str = ""


class ChatRequest(_WireModel):
    """One chat invocation. Immutable once built."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=(), frozen=True
    )

    prompts: list[PromptRequest]
    language: str = "en"
    chat_options: ChatOptions = Field(default_factory=ChatOptions)


class _StreamMessageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: str = Field(default="plain", description="markdown | mermaid | plain")
    content: str = ""


class ContentMessage(_StreamMessageBase):
    """A chunk of generated output."""

    type: Literal["content"] = "content"

    @property
    def is_terminal(self) -> bool:
        return False


class ErrorMessage(_StreamMessageBase):
    """Stream failure. Always the last message of a stream."""

    type: Literal["error"] = "error"

    @property
    def is_terminal(self) -> bool:
        return True


class CompleteMessage(_StreamMessageBase):
    """Normal end of the generated output. Always the last message of a stream."""

    type: Literal["complete"] = "complete"

    @property
    def is_terminal(self) -> bool:
        return True


StreamMessage = Annotated[
    Union[ContentMessage, ErrorMessage, CompleteMessage],
    Field(discriminator="type"),
]

_stream_message_adapter: TypeAdapter[StreamMessage] = TypeAdapter(StreamMessage)


def decode_stream_message(data: str) -> StreamMessage:
    """Decode one SSE data payload. Raises pydantic.ValidationError on bad input."""
    return _stream_message_adapter.validate_json(data)


class AvailableModels(BaseModel):
    models: list[str] = Field(default_factory=list)
    vendors: dict[str, list[str]] = Field(default_factory=dict, description="vendor -> model names")


class FabricConfig(BaseModel):
    """Vendor API keys stored on the Fabric server."""

    anthropic: str = ""
    deepseek: str = ""
    gemini: str = ""
    grokai: str = ""
    groq: str = ""
    lmstudio: str = ""
    mistral: str = ""
    ollama: str = ""
    openai: str = ""
    openrouter: str = ""
    silicon: str = ""


class Context(BaseModel):
    name: str
    content: str = ""


class Pattern(BaseModel):
    name: str
    description: str = ""
    pattern: str = ""


class SessionMessage(BaseModel):
    role: str = Field(description="user | assistant | system")
    content: str = ""


class Session(BaseModel):
    name: str
    messages: list[SessionMessage] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def _null_messages(cls, v):
        # server sends null for an empty session
        return [] if v is None else v


class Strategy(BaseModel):
    name: str
    description: str = ""
    pattern: str = ""
