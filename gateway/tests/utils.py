"""Helpers for building a gateway app wired to a fake upstream."""

from typing import Any, Callable, Dict, List, Optional

import httpx
import orjson
from fastapi import FastAPI

from gateway.config import ConfigurationService
from gateway.config.models import ConfigModel
from gateway.dependencies.container import ServiceContainer
from gateway.main import create_app

UpstreamHandler = Callable[[httpx.Request], httpx.Response]

TEST_CONFIG: Dict[str, Any] = {
    'logging': {'level': 'WARNING', 'console_enabled': False},
    'streaming': {'heartbeat_interval': 5, 'idle_timeout': 5, 'provider_timeout': 10, 'backoff_429': 0, 'backoff_5xx': 0},
    'connections': [
        {'id': 'main', 'provider': 'openai', 'base_url': 'https://upstream.test/v1', 'api_key': 'sk-test'},
        {'id': 'local', 'provider': 'ollama', 'base_url': 'http://ollama.test', 'auth_type': 'none'},
        {'id': 'legacy', 'provider': 'cohere', 'base_url': 'https://cohere.test'},
    ],
    'models': [
        {'alias': 'gpt', 'connection': 'main', 'id': 'gpt-4o-mini', 'context_limit': 4096},
        {'alias': 'llama', 'connection': 'local', 'id': 'llama3', 'context_limit': 4096},
        {'alias': 'command', 'connection': 'legacy'},
    ],
}


def create_test_config(**overrides) -> ConfigModel:
    data = dict(TEST_CONFIG)
    data.update(overrides)
    return ConfigModel(**data)


def create_test_app(handler: UpstreamHandler, config: Optional[ConfigModel] = None) -> FastAPI:
    """App whose upstream HTTP traffic is answered by `handler`."""
    config = config or create_test_config()
    container = ServiceContainer(
        ConfigurationService(config=config),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return create_app(config=config, service_container=container)


def openai_stream(*contents: str, finish_reason: str = 'stop') -> bytes:
    units = [{'choices': [{'index': 0, 'delta': {'content': text}, 'finish_reason': None}]} for text in contents]
    units.append({'choices': [{'index': 0, 'delta': {}, 'finish_reason': finish_reason}]})
    return b''.join(b'data: ' + orjson.dumps(unit) + b'\n\n' for unit in units) + b'data: [DONE]\n\n'


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Decode `data:` frames of an SSE body, skipping comments such as pings."""
    events = []
    for block in body.split('\n\n'):
        block = block.strip()
        if block.startswith('data: '):
            events.append(orjson.loads(block[len('data: ') :]))
    return events
