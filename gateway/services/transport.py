"""Upstream transport: hard deadline, cooperative abort and a single fixed-delay retry."""

import asyncio
from typing import Awaitable, Callable, Optional

import httpx
import orjson

from gateway.config.log import get_logger
from gateway.errors import GatewayException, UpstreamTimeout
from gateway.providers.base import ProviderRequest
from gateway.services.error_handler import ErrorHandlingService

MAX_ERROR_BODY = 2000


class AbortSignal:
    """Cooperative abort controller shared by everything touching one upstream call."""

    def __init__(self):
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None
        self.reason: Optional[BaseException] = None

    @classmethod
    def with_deadline(cls, seconds: float) -> 'AbortSignal':
        """Signal that aborts itself with UpstreamTimeout once the deadline passes."""
        signal = cls()
        loop = asyncio.get_running_loop()
        signal._timer = loop.call_later(seconds, lambda: signal.abort(UpstreamTimeout(f'Provider request exceeded {seconds:g}s deadline')))
        return signal

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: BaseException) -> None:
        """First reason wins, later calls are ignored."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable):
        """Await `awaitable`, raising the abort reason if the signal fires first."""
        task = asyncio.ensure_future(awaitable)
        if self.aborted:
            task.cancel()
            raise self.reason

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if not task.cancelled() and task.done():
            return task.result()
        raise self.reason

    def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


IssueFn = Callable[[AbortSignal], Awaitable[httpx.Response]]


class ProviderRequester:
    """Issues provider calls with at most one retry after 429 or 5xx."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        backoff_429: float = 15.0,
        backoff_5xx: float = 2.0,
        error_handler: Optional[ErrorHandlingService] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger=None,
    ):
        self._client = client
        self.backoff_429 = backoff_429
        self.backoff_5xx = backoff_5xx
        self.error_handler = error_handler or ErrorHandlingService()
        self._sleep = sleep
        self.logger = logger or get_logger(__name__)

    def _backoff_for(self, status_code: int) -> Optional[float]:
        if status_code == 429:
            return self.backoff_429
        if status_code >= 500:
            return self.backoff_5xx
        return None

    async def request_with_backoff(self, issue: IssueFn, signal: AbortSignal) -> httpx.Response:
        """Run `issue` once, and once more after a fixed delay on 429 or 5xx. Never more."""
        response = await signal.race(issue(signal))
        delay = self._backoff_for(response.status_code)
        if delay is None:
            return response

        self.logger.warning(f'Provider returned {response.status_code}, retrying once after {delay:g}s', status=response.status_code)
        await response.aclose()
        await signal.race(self._sleep(delay))
        return await signal.race(issue(signal))

    async def send(self, provider_request: ProviderRequest, signal: AbortSignal, retry: bool = True) -> httpx.Response:
        """Open the provider call and return a successful (possibly streaming) response."""

        async def issue(_: AbortSignal) -> httpx.Response:
            request = self._client.build_request(
                'POST',
                provider_request.url,
                headers=provider_request.headers,
                content=orjson.dumps(provider_request.payload),
            )
            return await self._client.send(request, stream=provider_request.stream)

        try:
            if retry:
                response = await self.request_with_backoff(issue, signal)
            else:
                response = await signal.race(issue(signal))
        except httpx.HTTPError as e:
            raise self.error_handler.convert_httpx_exception(e) from e

        await self.raise_for_upstream_status(response)
        return response

    async def raise_for_upstream_status(self, response: httpx.Response) -> None:
        """Close the response and raise the matching upstream error when the status is not 2xx."""
        if response.is_success:
            return
        try:
            body = (await response.aread()).decode('utf-8', errors='replace')[:MAX_ERROR_BODY]
        except httpx.HTTPError:
            body = ''
        finally:
            await response.aclose()
        raise self.error_handler.map_status(response.status_code, body)


async def read_json(response: httpx.Response, signal: AbortSignal) -> dict:
    """Read a whole response body under the same deadline and decode it as JSON."""
    try:
        body = await signal.race(response.aread())
    except httpx.HTTPError as e:
        raise ErrorHandlingService().convert_httpx_exception(e) from e
    finally:
        await response.aclose()
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise GatewayException(f'Provider returned invalid JSON: {e}') from e
    return data if isinstance(data, dict) else {}
