"""Per-request stream settings snapshot."""

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional, Tuple

from gateway.config.models import StreamingConfig


@dataclass(frozen=True, slots=True)
class StreamSettings:
    """Immutable settings used for the lifetime of one client stream."""

    heartbeat_interval: float = 15.0
    idle_timeout: float = 60.0
    initial_grace: float = 120.0
    provider_timeout: float = 300.0
    backoff_429: float = 15.0
    backoff_5xx: float = 2.0
    usage_emit: bool = True
    usage_provider_only: bool = False
    reasoning_enabled: bool = True
    reasoning_save_to_db: bool = True
    reasoning_tags_mode: str = 'default'
    reasoning_custom_tags: Optional[Tuple[str, str]] = None
    reasoning_effort: str = ''
    ollama_think: bool = False
    temperature: float = 0.7
    channel_capacity: int = 256


_FIELD_NAMES = frozenset(f.name for f in fields(StreamSettings))


def _apply(settings: StreamSettings, layer: Optional[Mapping[str, Any]]) -> StreamSettings:
    if not layer:
        return settings
    changes = {k: v for k, v in layer.items() if k in _FIELD_NAMES and v is not None}
    return replace(settings, **changes) if changes else settings


def resolve_stream_settings(
    system: Optional[StreamingConfig] = None,
    session_defaults: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> StreamSettings:
    """Resolve settings with precedence request override > session default > system setting > static default.

    None values in any layer mean "not set" and fall through to the next layer.
    Unknown keys are ignored.
    """
    settings = StreamSettings()
    if system is not None:
        settings = _apply(settings, system.model_dump())
    settings = _apply(settings, session_defaults)
    return _apply(settings, overrides)
