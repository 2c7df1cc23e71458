"""Provider-related enumerations and typing helpers."""

from __future__ import annotations

from enum import Enum
from typing import Literal


class ProviderKind(str, Enum):
    """Supported upstream protocol identifiers."""

    OPENAI = 'openai'
    AZURE_OPENAI = 'azure_openai'
    OLLAMA = 'ollama'
    GOOGLE_GENAI = 'google_genai'


class AuthKind(str, Enum):
    """How credentials are attached to an upstream request."""

    BEARER = 'bearer'
    SYSTEM_OAUTH = 'system_oauth'
    MICROSOFT_ENTRA_ID = 'microsoft_entra_id'
    NONE = 'none'


StreamFraming = Literal['sse', 'ndjson']
