import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class RequestContext:
    """Request context for structured logging and request metadata."""

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    path: Optional[str] = None
    method: Optional[str] = None

    # Populated once the chat turn is resolved
    session_id: Optional[str] = None
    model_alias: Optional[str] = None
    provider_kind: Optional[str] = None

    def log_fields(self) -> Dict[str, str]:
        """Fields attached to every log line, unset ones left out."""
        fields = {
            'correlation_id': self.correlation_id,
            'path': self.path,
            'method': self.method,
            'session_id': self.session_id,
            'model_alias': self.model_alias,
            'provider_kind': self.provider_kind,
        }
        return {k: v for k, v in fields.items() if v is not None}

    def update_turn_info(self, session_id: str, model_alias: str, provider_kind: str) -> None:
        self.session_id = session_id
        self.model_alias = model_alias
        self.provider_kind = provider_kind


request_context_var: ContextVar[RequestContext] = ContextVar('request_context')


def get_request_context() -> RequestContext:
    """Get current request context, creating an anonymous one outside a request."""
    context = request_context_var.get(None)
    if context is None:
        context = RequestContext(correlation_id='-')
        request_context_var.set(context)
    return context


def set_request_context(context: RequestContext) -> None:
    """Set request context."""
    request_context_var.set(context)


def get_correlation_id() -> str:
    """Get correlation ID from request context."""
    return get_request_context().correlation_id
