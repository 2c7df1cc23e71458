"""Persistence collaborators and their in-memory reference implementations."""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from gateway.config.models import ConfigModel, ConnectionConfig, ModelConfig


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Session:
    id: str
    model_alias: Optional[str] = None
    # Session-level stream setting defaults, same keys as StreamSettings
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMessage:
    id: str
    session_id: str
    role: str
    content: str
    images: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    reasoning_duration: Optional[int] = None
    client_message_id: Optional[str] = None
    parent_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class UsageRecord:
    session_id: str
    message_id: Optional[str]
    model: str
    connection_id: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    context_limit: int
    source: str
    first_token_latency_ms: Optional[int] = None
    response_time_ms: Optional[int] = None
    tokens_per_second: Optional[float] = None
    created_at: float = field(default_factory=time.time)


class CredentialCipher(Protocol):
    def decrypt(self, value: str) -> str: ...


class ConnectionStore(Protocol):
    async def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]: ...

    async def get_model(self, alias: str) -> Optional[ModelConfig]: ...

    async def default_model(self) -> Optional[ModelConfig]: ...


class SessionStore(Protocol):
    async def get_session(self, session_id: str) -> Optional[Session]: ...

    async def create_session(self, model_alias: Optional[str] = None) -> Session: ...


class MessageStore(Protocol):
    async def create_user_message(
        self, session_id: str, content: str, images: List[str], client_message_id: Optional[str] = None
    ) -> StoredMessage:
        """Create the user message, or return the existing one carrying the same client token."""
        ...

    async def list_history(self, session_id: str, exclude_id: Optional[str] = None) -> List[StoredMessage]: ...

    async def create_assistant_message(
        self,
        session_id: str,
        content: str,
        reasoning: Optional[str] = None,
        reasoning_duration: Optional[int] = None,
        parent_id: Optional[str] = None,
    ) -> StoredMessage: ...


class UsageStore(Protocol):
    async def record_usage(self, record: UsageRecord) -> None: ...


class PassthroughCipher:
    """Cipher for plaintext credentials held in configuration."""

    def decrypt(self, value: str) -> str:
        return value


class ConfigConnectionStore:
    """Connections and models read from the loaded configuration."""

    def __init__(self, config: ConfigModel):
        self.config = config

    async def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]:
        return self.config.get_connection(connection_id)

    async def get_model(self, alias: str) -> Optional[ModelConfig]:
        return self.config.get_model(alias)

    async def default_model(self) -> Optional[ModelConfig]:
        return self.config.models[0] if self.config.models else None


class InMemorySessionStore:
    def __init__(self):
        self.sessions: Dict[str, Session] = {}

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    async def create_session(self, model_alias: Optional[str] = None) -> Session:
        session = Session(id=_new_id(), model_alias=model_alias)
        self.sessions[session.id] = session
        return session


class InMemoryMessageStore:
    def __init__(self):
        self.messages: Dict[str, List[StoredMessage]] = {}

    async def create_user_message(
        self, session_id: str, content: str, images: List[str], client_message_id: Optional[str] = None
    ) -> StoredMessage:
        history = self.messages.setdefault(session_id, [])
        if client_message_id:
            for message in history:
                if message.role == 'user' and message.client_message_id == client_message_id:
                    return message

        message = StoredMessage(
            id=_new_id(), session_id=session_id, role='user', content=content, images=list(images), client_message_id=client_message_id
        )
        history.append(message)
        return message

    async def list_history(self, session_id: str, exclude_id: Optional[str] = None) -> List[StoredMessage]:
        return [m for m in self.messages.get(session_id, []) if m.id != exclude_id]

    async def create_assistant_message(
        self,
        session_id: str,
        content: str,
        reasoning: Optional[str] = None,
        reasoning_duration: Optional[int] = None,
        parent_id: Optional[str] = None,
    ) -> StoredMessage:
        message = StoredMessage(
            id=_new_id(),
            session_id=session_id,
            role='assistant',
            content=content,
            reasoning=reasoning,
            reasoning_duration=reasoning_duration,
            parent_id=parent_id,
        )
        self.messages.setdefault(session_id, []).append(message)
        return message


class InMemoryUsageStore:
    def __init__(self):
        self.records: List[UsageRecord] = []

    async def record_usage(self, record: UsageRecord) -> None:
        self.records.append(record)
