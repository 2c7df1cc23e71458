import dataclasses

import pytest

from gateway.config.models import StreamingConfig
from gateway.config.settings import StreamSettings, resolve_stream_settings


def test_static_defaults():
    settings = resolve_stream_settings()

    assert settings.heartbeat_interval == 15.0
    assert settings.idle_timeout == 60.0
    assert settings.initial_grace == 120.0
    assert settings.provider_timeout == 300.0
    assert settings.usage_emit is True
    assert settings.usage_provider_only is False
    assert settings.reasoning_enabled is True
    assert settings.reasoning_save_to_db is True
    assert settings.reasoning_tags_mode == 'default'


def test_precedence_request_over_session_over_system():
    system = StreamingConfig(reasoning_enabled=False, temperature=0.2, ollama_think=True, idle_timeout=30, initial_grace=45)
    session = {'reasoning_enabled': True, 'temperature': 0.5}
    overrides = {'temperature': 1.1}

    settings = resolve_stream_settings(system, session, overrides)

    assert settings.temperature == 1.1
    assert settings.reasoning_enabled is True
    assert settings.ollama_think is True
    assert settings.idle_timeout == 30
    assert settings.initial_grace == 45


@pytest.mark.parametrize('overrides', [{'reasoning_enabled': None}, {'unknown_key': True}, {}, None])
def test_unset_overrides_fall_through(overrides):
    system = StreamingConfig(reasoning_enabled=False)

    assert resolve_stream_settings(system, None, overrides).reasoning_enabled is False


def test_snapshot_is_immutable():
    settings = resolve_stream_settings()

    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.heartbeat_interval = 1.0


def test_custom_tags_carried_from_system():
    system = StreamingConfig(reasoning_tags_mode='custom', reasoning_custom_tags=('<r>', '</r>'))

    settings = resolve_stream_settings(system)

    assert settings.reasoning_tags_mode == 'custom'
    assert tuple(settings.reasoning_custom_tags) == ('<r>', '</r>')
    assert isinstance(settings, StreamSettings)
