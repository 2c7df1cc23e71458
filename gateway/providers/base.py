"""Adapter interface shared by every provider protocol."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from gateway.config.log import get_logger
from gateway.config.models import ConnectionConfig
from gateway.models import CanonicalRequest, UsageSnapshot
from gateway.providers.types import ProviderKind, StreamFraming


@dataclass(slots=True)
class ProviderRequest:
    """Fully built upstream call."""

    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]
    framing: StreamFraming = 'sse'
    stream: bool = True


@dataclass(slots=True)
class ChunkDelta:
    """What one parsed stream unit contributes."""

    content: str = ''
    reasoning: str = ''
    finish_reason: Optional[str] = None
    usage: Optional[UsageSnapshot] = None
    done: bool = False


@dataclass(slots=True)
class FinalResponse:
    """Parsed non-streaming response."""

    content: str = ''
    reasoning: str = ''
    finish_reason: Optional[str] = None
    usage: Optional[UsageSnapshot] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Translates canonical requests into one provider protocol and parses its replies."""

    kind: ProviderKind
    framing: StreamFraming = 'sse'

    def __init__(self, logger=None):
        self.logger = logger or get_logger(__name__)

    @abstractmethod
    def build_request(
        self,
        request: CanonicalRequest,
        connection: ConnectionConfig,
        raw_model_id: str,
        auth_headers: Mapping[str, str],
        stream: bool = True,
    ) -> ProviderRequest:
        """Build URL, headers and payload for one upstream call."""

    @abstractmethod
    def parse_chunk(self, unit: Dict[str, Any]) -> ChunkDelta:
        """Parse one decoded stream unit (an SSE data object or an NDJSON line)."""

    @abstractmethod
    def parse_final(self, body: Dict[str, Any]) -> FinalResponse:
        """Parse a complete non-streaming response body."""

    def _base_headers(self, connection: ConnectionConfig, auth_headers: Mapping[str, str]) -> Dict[str, str]:
        """Content type, then auth, then the connection's static headers."""
        headers = {'Content-Type': 'application/json'}
        headers.update(auth_headers)
        headers.update(connection.headers)
        return headers

    @staticmethod
    def _join_url(base_url: str, path: str) -> str:
        return base_url.rstrip('/') + path
