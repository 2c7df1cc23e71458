"""Credential resolution for upstream connections."""

import os
import time
from typing import Dict, Optional

import httpx

from gateway.config.log import get_logger
from gateway.config.models import ConnectionConfig
from gateway.errors import ValidationError
from gateway.providers.types import AuthKind, ProviderKind
from gateway.stores import CredentialCipher

AZURE_TOKEN_ENV = 'AZURE_ACCESS_TOKEN'
IMDS_TOKEN_URL = 'http://169.254.169.254/metadata/identity/oauth2/token'
IMDS_PARAMS = {'api-version': '2018-02-01', 'resource': 'https://cognitiveservices.azure.com/'}


class AuthResolver:
    """Turns a connection's auth kind and stored credential into request headers."""

    def __init__(
        self,
        cipher: CredentialCipher,
        client: httpx.AsyncClient,
        system_oauth_token: Optional[str] = None,
        imds_timeout: float = 5.0,
        logger=None,
    ):
        self.cipher = cipher
        self.client = client
        self.system_oauth_token = system_oauth_token
        self.imds_timeout = imds_timeout
        self.logger = logger or get_logger(__name__)
        self._managed_token: Optional[str] = None
        self._managed_token_expires_at = 0.0

    async def resolve(self, connection: ConnectionConfig) -> Dict[str, str]:
        try:
            auth_kind = AuthKind(connection.auth_type)
        except ValueError:
            raise ValidationError(f"Unsupported auth type '{connection.auth_type}' on connection '{connection.id}'")

        match auth_kind:
            case AuthKind.BEARER:
                if not connection.api_key:
                    return {}
                key = self.cipher.decrypt(connection.api_key)
                if connection.provider == ProviderKind.GOOGLE_GENAI.value:
                    return {'x-goog-api-key': key}
                return {'Authorization': f'Bearer {key}'}
            case AuthKind.SYSTEM_OAUTH:
                if not self.system_oauth_token:
                    self.logger.warning('system_oauth connection without a configured system token', connection_id=connection.id)
                    return {}
                return {'Authorization': f'Bearer {self.system_oauth_token}'}
            case AuthKind.MICROSOFT_ENTRA_ID:
                if connection.provider != ProviderKind.AZURE_OPENAI.value:
                    return {}
                token = await self.fetch_managed_identity_token()
                return {'Authorization': f'Bearer {token}'} if token else {}
            case _:
                return {}

    async def fetch_managed_identity_token(self) -> Optional[str]:
        """Fetch an Azure managed identity token. Failures are logged and yield None."""
        env_token = os.getenv(AZURE_TOKEN_ENV)
        if env_token:
            return env_token

        if self._managed_token and time.time() < self._managed_token_expires_at - 60:
            return self._managed_token

        try:
            response = await self.client.get(IMDS_TOKEN_URL, params=IMDS_PARAMS, headers={'Metadata': 'true'}, timeout=self.imds_timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning(f'Managed identity token fetch failed: {e}')
            return None

        token = data.get('access_token')
        if not token:
            self.logger.warning('Managed identity response carried no access_token')
            return None

        try:
            self._managed_token_expires_at = float(data.get('expires_on') or 0)
        except (TypeError, ValueError):
            self._managed_token_expires_at = 0.0
        self._managed_token = token
        return token
