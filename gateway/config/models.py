import os
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gateway.config.paths import get_app_dir
from gateway.config.yaml import safe_load_with_env


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default='INFO', description='Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)')
    console_enabled: bool = Field(default=True, description='Enable console logging')
    file_enabled: bool = Field(default=False, description='Enable file logging')
    log_file_dir: Optional[str] = Field(default=None, description='Log directory (defaults to ~/.inference-gateway/logs)')
    max_file_size: str = Field(default='10MB', description='Maximum log file size before rotation')
    backup_count: int = Field(default=4, description='Number of backup files to keep')


class StreamingConfig(BaseModel):
    """System-level stream settings. Sessions and requests may override some of these."""

    heartbeat_interval: float = Field(default=15.0, gt=0, description='Seconds between `: ping` heartbeats')
    idle_timeout: float = Field(default=60.0, gt=0, description='Abort upstream read after this many seconds without a byte')
    initial_grace: float = Field(default=120.0, gt=0, description='Abort the call when no chunk arrived this many seconds after it started')
    provider_timeout: float = Field(default=300.0, gt=0, description='Hard deadline for one provider call, retry included')
    backoff_429: float = Field(default=15.0, ge=0, description='Fixed wait before the single retry on HTTP 429')
    backoff_5xx: float = Field(default=2.0, ge=0, description='Fixed wait before the single retry on HTTP 5xx')
    usage_emit: bool = Field(default=True, description='Emit usage events to the client')
    usage_provider_only: bool = Field(default=False, description='Only report usage the provider sent')
    reasoning_enabled: bool = Field(default=True)
    reasoning_save_to_db: bool = Field(default=True)
    reasoning_tags_mode: str = Field(default='default', description='default, custom or off')
    reasoning_custom_tags: Optional[Tuple[str, str]] = Field(default=None, description='[open, close] pair used in custom mode')
    reasoning_effort: str = Field(default='', description='Default effort hint for OpenAI-style providers')
    ollama_think: bool = Field(default=False)
    temperature: float = Field(default=0.7, ge=0, le=2)
    channel_capacity: int = Field(default=256, ge=1, description='Bounded size of the outbound event channel')

    @field_validator('reasoning_tags_mode')
    @classmethod
    def validate_tags_mode(cls, v: str) -> str:
        if v not in {'default', 'custom', 'off'}:
            raise ValueError(f"Invalid reasoning_tags_mode '{v}'. Valid modes: default, custom, off")
        return v

    @field_validator('reasoning_custom_tags')
    @classmethod
    def validate_custom_tags(cls, v: Optional[Tuple[str, str]]) -> Optional[Tuple[str, str]]:
        if v is not None and (not v[0] or not v[1]):
            raise ValueError('reasoning_custom_tags must be two non-empty delimiters')
        return v


class ConnectionConfig(BaseModel):
    """Upstream connection. Provider kind stays a plain string so unknown kinds fail at request time."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description='Unique connection identifier')
    provider: str = Field(description='openai, azure_openai, ollama or google_genai')
    base_url: str = Field(description='Base URL for the provider API')
    auth_type: str = Field(default='bearer', description='bearer, system_oauth, microsoft_entra_id or none')
    api_key: str = Field(default='', description='Credential material, decrypted by the credential cipher before use')
    headers: Dict[str, str] = Field(default_factory=dict, description='Extra static headers sent on every request')
    api_version: Optional[str] = Field(default=None, description='API version (azure_openai)')


class ModelConfig(BaseModel):
    """Model alias mapped onto a connection and a raw upstream model id."""

    alias: str = Field(description='Name clients use to select this model')
    connection: str = Field(description='Connection id serving this model')
    id: str = Field(default='', description='Raw upstream model id (defaults to alias)')
    context_limit: int = Field(default=8192, ge=1, description='Context window in tokens')
    completion_limit: int = Field(default=0, ge=0, description='Maximum completion tokens, 0 means context-bounded')

    @model_validator(mode='before')
    @classmethod
    def set_default_id(cls, data):
        """Set id to alias if id is not provided or empty."""
        if isinstance(data, dict) and not data.get('id'):
            data['id'] = data.get('alias', '')
        return data


class ConfigModel(BaseModel):
    """Configuration model with validation."""

    model_config = ConfigDict(extra='allow')

    version: str = Field(default='1', description='Config version')
    host: str = Field(default='127.0.0.1')
    port: int = Field(default=8000, ge=1, le=65535)
    dev: bool = Field(default=False)
    cors_allow_origins: List[str] = Field(default_factory=list)
    system_oauth_token: Optional[str] = Field(
        default_factory=lambda: os.getenv('SYSTEM_OAUTH_TOKEN'), description='Static bearer token for system_oauth connections'
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description='Logging configuration')
    streaming: StreamingConfig = Field(default_factory=StreamingConfig, description='System stream settings')
    connections: List[ConnectionConfig] = Field(default_factory=list)
    models: List[ModelConfig] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_references(self) -> 'ConfigModel':
        """Every model must point at a known connection, aliases must be unique."""
        connection_ids = {c.id for c in self.connections}
        errors = []
        seen = set()
        for model in self.models:
            if model.connection not in connection_ids:
                errors.append(f"Model '{model.alias}' references unknown connection '{model.connection}'")
            if model.alias in seen:
                errors.append(f"Duplicate alias '{model.alias}'")
            seen.add(model.alias)
        if errors:
            raise ValueError('Configuration validation failed:\n' + '\n'.join(errors))
        return self

    def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]:
        for connection in self.connections:
            if connection.id == connection_id:
                return connection
        return None

    def get_model(self, alias: str) -> Optional[ModelConfig]:
        for model in self.models:
            if model.alias == alias:
                return model
        return None

    @classmethod
    def load(cls, config_path: str | None = None) -> 'ConfigModel':
        """Load configuration from YAML file.

        Tries multiple locations in order:
        1. Explicit config_path if provided
        2. ~/.inference-gateway/config.yaml in user home directory
        3. ./config.yaml in current directory
        """
        config_paths = []
        if config_path:
            config_paths.append(config_path)
        else:
            home_config = get_app_dir() / 'config.yaml'
            if home_config.exists():
                config_paths.append(str(home_config))
            config_paths.append('config.yaml')

        data = {}
        for path in config_paths:
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    # Later files override earlier ones
                    data.update(safe_load_with_env(f) or {})
            except FileNotFoundError:
                continue
            except yaml.YAMLError as e:
                raise ValueError(f'Invalid YAML in config file {path}: {e}')
            except Exception as e:
                raise ValueError(f'Error reading config file {path}: {e}')

        return cls(**data)

    def save(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.model_dump(mode='json'), f, default_flow_style=False, sort_keys=False, indent=2)
