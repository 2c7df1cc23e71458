"""Error handling service for mapping exceptions to gateway errors and client payloads."""

from typing import Any, Dict, Optional

import httpx
from fastapi import status as Status

from gateway.errors import (
    GatewayException,
    UpstreamAuthenticationError,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamServerError,
    UpstreamTimeout,
)


class ErrorHandlingService:
    """Service for handling errors and mapping them to appropriate responses."""

    def convert_httpx_exception(self, exc: httpx.HTTPError, correlation_id: Optional[str] = None) -> UpstreamError:
        """Convert httpx exceptions to domain exceptions."""
        match exc:
            case httpx.HTTPStatusError():
                body = exc.response.text if exc.response.is_stream_consumed else ''
                return self.map_status(exc.response.status_code, body, correlation_id)
            case httpx.TimeoutException():
                return UpstreamTimeout(f'Upstream timed out: {exc}', correlation_id=correlation_id)
            case httpx.RequestError():
                return UpstreamConnectionError(f'HTTP client error: {exc}', correlation_id=correlation_id)
            case _:
                return UpstreamError(f'Unknown HTTP error: {exc}', correlation_id=correlation_id)

    def map_status(self, status_code: int, response_body: str = '', correlation_id: Optional[str] = None) -> UpstreamError:
        """Map an upstream HTTP status to a specific domain exception."""
        error_message = f'Upstream returned HTTP {status_code}: {response_body}' if response_body else f'Upstream returned HTTP {status_code}'

        match status_code:
            case Status.HTTP_401_UNAUTHORIZED | Status.HTTP_403_FORBIDDEN:
                exc_type = UpstreamAuthenticationError
            case Status.HTTP_429_TOO_MANY_REQUESTS:
                exc_type = UpstreamRateLimited
            case code if code >= 500:
                exc_type = UpstreamServerError
            case _:
                exc_type = UpstreamError
        return exc_type(error_message, status_code=status_code, response_body=response_body, correlation_id=correlation_id)

    def get_error_type(self, exc: Exception) -> str:
        """Map exceptions to API error types."""
        match exc:
            case GatewayException():
                return exc.error_type
            case httpx.HTTPError():
                return self.get_error_type(self.convert_httpx_exception(exc))
            case _:
                return 'api_error'

    def get_http_status(self, exc: Exception) -> int:
        if isinstance(exc, GatewayException):
            return exc.http_status
        return Status.HTTP_500_INTERNAL_SERVER_ERROR

    def get_error_payload(self, exc: Exception) -> Dict[str, Any]:
        """JSON body returned before streaming has started."""
        message = exc.message if isinstance(exc, GatewayException) else str(exc) or exc.__class__.__name__
        return {'error': {'type': self.get_error_type(exc), 'message': message}}
