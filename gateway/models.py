"""Canonical chat models shared by the API layer, the adapters and the relay."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal['system', 'user', 'assistant']


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal['text'] = 'text'
    text: str


class ImagePart(BaseModel):
    """Image given as a URL, usually a base64 data URL."""

    model_config = ConfigDict(frozen=True)

    type: Literal['image_url'] = 'image_url'
    image_url: str


ContentPart = Union[TextPart, ImagePart]


class Turn(BaseModel):
    """One conversation turn. Content is plain text or an ordered tuple of parts."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, Tuple[ContentPart, ...]]

    @property
    def text(self) -> str:
        """Text content with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return '\n'.join(part.text for part in self.content if isinstance(part, TextPart))

    @property
    def images(self) -> List[ImagePart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ImagePart)]


class SamplingParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None


class ReasoningOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    effort: Optional[str] = None
    think: bool = False


class CanonicalRequest(BaseModel):
    """Provider-neutral request handed to an adapter. Never mutated once built."""

    model_config = ConfigDict(frozen=True)

    model: str
    turns: Tuple[Turn, ...]
    sampling: SamplingParams = Field(default_factory=SamplingParams)
    reasoning: ReasoningOptions = Field(default_factory=ReasoningOptions)
    stream: bool = True


class ChatImage(BaseModel):
    data: str = Field(min_length=1, description='Base64 payload or a full data URL')
    mime: str = Field(default='image/png')

    @field_validator('mime')
    @classmethod
    def validate_mime(cls, v: str) -> str:
        if not v.startswith('image/'):
            raise ValueError(f"Unsupported image mime type '{v}'")
        return v

    def to_data_url(self) -> str:
        if self.data.startswith('data:'):
            return self.data
        return f'data:{self.mime};base64,{self.data}'


class ChatStreamRequest(BaseModel):
    """Body of POST /api/chat/stream."""

    session_id: Optional[str] = None
    model: Optional[str] = None
    content: str = ''
    images: List[ChatImage] = Field(default_factory=list, max_length=4)
    reasoning_enabled: Optional[bool] = None
    reasoning_effort: Optional[Literal['low', 'medium', 'high']] = None
    ollama_think: Optional[bool] = None
    save_reasoning: Optional[bool] = None
    context_enabled: Optional[bool] = None
    client_message_id: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)


@dataclass(slots=True)
class UsageSnapshot:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    context_limit: int = 0
    context_remaining: int = 0
    source: Literal['provider', 'local'] = 'local'

    @property
    def is_valid(self) -> bool:
        """Provider usage counts only if at least one counter is nonzero."""
        return self.prompt_tokens > 0 or self.completion_tokens > 0 or self.total_tokens > 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'prompt_tokens': self.prompt_tokens,
            'completion_tokens': self.completion_tokens,
            'total_tokens': self.total_tokens,
            'context_limit': self.context_limit,
            'context_remaining': self.context_remaining,
        }


@dataclass(slots=True)
class StreamEvent:
    """Event written to the client as one `data: <json>` SSE frame."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, **self.data}

    @classmethod
    def start(cls, message_id: str) -> 'StreamEvent':
        return cls('start', {'messageId': message_id})

    @classmethod
    def content(cls, text: str) -> 'StreamEvent':
        return cls('content', {'content': text})

    @classmethod
    def reasoning(cls, text: str) -> 'StreamEvent':
        return cls('reasoning', {'content': text})

    @classmethod
    def reasoning_done(cls, duration: int) -> 'StreamEvent':
        return cls('reasoning', {'done': True, 'duration': duration})

    @classmethod
    def stop(cls, reason: str) -> 'StreamEvent':
        return cls('stop', {'reason': reason})

    @classmethod
    def usage(cls, snapshot: UsageSnapshot) -> 'StreamEvent':
        return cls('usage', {'usage': snapshot.to_dict()})

    @classmethod
    def error(cls, message: str) -> 'StreamEvent':
        return cls('error', {'error': message})

    @classmethod
    def complete(cls) -> 'StreamEvent':
        return cls('complete')
