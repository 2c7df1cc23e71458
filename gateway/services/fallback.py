"""One-shot non-streaming call used when a stream fails before any visible content."""

from typing import Mapping, Optional

from gateway.config.log import get_logger
from gateway.config.models import ConnectionConfig
from gateway.errors import GatewayException
from gateway.models import CanonicalRequest
from gateway.providers.base import FinalResponse, ProviderAdapter
from gateway.services.transport import AbortSignal, ProviderRequester, read_json


class NonStreamFallback:
    def __init__(self, requester: ProviderRequester, logger=None):
        self.requester = requester
        self.logger = logger or get_logger(__name__)

    async def execute(
        self,
        adapter: ProviderAdapter,
        request: CanonicalRequest,
        connection: ConnectionConfig,
        raw_model_id: str,
        auth_headers: Mapping[str, str],
        timeout: float,
    ) -> Optional[FinalResponse]:
        """Issue exactly one non-streaming call. Returns None when it fails or yields no text."""
        provider_request = adapter.build_request(request, connection, raw_model_id, auth_headers, stream=False)
        signal = AbortSignal.with_deadline(timeout)
        try:
            response = await self.requester.send(provider_request, signal, retry=False)
            body = await read_json(response, signal)
        except GatewayException as e:
            self.logger.warning(f'Non-stream fallback failed: {e.message}')
            return None
        finally:
            signal.dispose()

        final = adapter.parse_final(body)
        if not final.content:
            self.logger.warning('Non-stream fallback returned no text')
            return None
        return final
