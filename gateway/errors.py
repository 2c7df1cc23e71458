"""Gateway domain exceptions."""

from typing import Optional


class GatewayException(Exception):
    """Base exception for gateway operations."""

    http_status: int = 500
    error_type: str = 'api_error'

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id


class ValidationError(GatewayException):
    """Request rejected before any upstream call."""

    http_status = 400
    error_type = 'invalid_request_error'

    def __init__(self, message: str, code: Optional[str] = None, correlation_id: Optional[str] = None):
        super().__init__(message, correlation_id)
        self.code = code
        if code:
            self.error_type = code


class ModelNotFoundError(GatewayException):
    http_status = 404
    error_type = 'not_found_error'


class UnsupportedProviderError(GatewayException):
    """Connection names a provider kind no adapter handles."""

    http_status = 400
    error_type = 'invalid_request_error'


class UpstreamError(GatewayException):
    """Exception for provider communication errors."""

    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message, correlation_id)
        self.status_code = status_code
        self.response_body = response_body


class UpstreamAuthenticationError(UpstreamError):
    error_type = 'authentication_error'


class UpstreamRateLimited(UpstreamError):
    http_status = 429
    error_type = 'rate_limit_error'


class UpstreamServerError(UpstreamError):
    pass


class UpstreamConnectionError(UpstreamError):
    pass


class UpstreamTimeout(UpstreamError):
    """Hard provider deadline elapsed."""

    http_status = 504
    error_type = 'timeout_error'


class UpstreamIdleTimeout(UpstreamTimeout):
    """No bytes arrived from the provider for longer than the idle threshold."""


class PersistenceError(GatewayException):
    """A store collaborator failed. Logged, never surfaced to a stream."""


class SessionNotFoundError(GatewayException):
    http_status = 404
    error_type = 'not_found_error'
