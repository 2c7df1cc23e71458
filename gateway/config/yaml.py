"""YAML loading with an ``!env`` tag for secrets kept out of config files."""

from __future__ import annotations

import os
from typing import Any

import yaml


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> Any:
    # `!env NAME` is required, `!env [NAME, default]` falls back to default
    if isinstance(node, yaml.ScalarNode):
        var_name = loader.construct_scalar(node)
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Required environment variable '{var_name}' is not set")
        return value

    if isinstance(node, yaml.SequenceNode):
        values = loader.construct_sequence(node)
        if len(values) != 2:
            raise yaml.constructor.ConstructorError(
                None,
                None,
                f'!env sequence must be [var_name, default], got {len(values)} elements',
                node.start_mark,
            )
        var_name, default_value = values
        if not isinstance(var_name, str):
            raise yaml.constructor.ConstructorError(None, None, 'Environment variable name must be a string', node.start_mark)
        return os.getenv(var_name, default_value)

    raise yaml.constructor.ConstructorError(
        None,
        None,
        f'!env expects a scalar or a [var_name, default] sequence, got {type(node).__name__}',
        node.start_mark,
    )


class _EnvLoader(yaml.SafeLoader):
    """SafeLoader with the ``!env`` constructor registered."""


_EnvLoader.add_constructor('!env', _env_constructor)


def safe_load_with_env(stream) -> Any:
    """Parse YAML like ``yaml.safe_load`` while resolving ``!env`` tags."""

    return yaml.load(stream, Loader=_EnvLoader)


__all__ = ['safe_load_with_env']
