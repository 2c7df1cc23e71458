"""Relay of one upstream stream to one client as server-sent events.

The relay runs as its own task so a client disconnect never cancels the
upstream call: the response body only consumes the outbound channel, and once
it goes away every further write is dropped while the relay still finishes and
persists the turn.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Mapping, Optional, Set

import httpx

from gateway.config.log import get_logger
from gateway.config.models import ConnectionConfig, ModelConfig
from gateway.config.settings import StreamSettings
from gateway.context import RequestContext, get_request_context, set_request_context
from gateway.errors import GatewayException, PersistenceError, UpstreamIdleTimeout
from gateway.models import CanonicalRequest, StreamEvent, UsageSnapshot
from gateway.providers.base import ChunkDelta, ProviderAdapter, ProviderRequest
from gateway.services.channel import EventChannel
from gateway.services.error_handler import ErrorHandlingService
from gateway.services.fallback import NonStreamFallback
from gateway.services.framing import StreamDecoder
from gateway.services.reasoning import ReasoningState, extract_by_tags, flush, resolve_tags
from gateway.services.transport import AbortSignal, ProviderRequester
from gateway.services.usage import UsageReconciler, compute_stream_metrics
from gateway.stores import MessageStore


class RelayState(str, Enum):
    INIT = 'init'
    STREAMING = 'streaming'
    DRAINING = 'draining'
    COMPLETE = 'complete'
    ERROR = 'error'


@dataclass
class RelayJob:
    """Everything the relay needs for one turn, resolved before the stream opens."""

    session_id: str
    user_message_id: str
    model: ModelConfig
    connection: ConnectionConfig
    adapter: ProviderAdapter
    request: CanonicalRequest
    provider_request: ProviderRequest
    auth_headers: Mapping[str, str]
    prompt_tokens: int
    context_limit: int
    context_remaining: int
    settings: StreamSettings = field(default_factory=StreamSettings)


class SseRelay:
    """Starts relay runs and keeps a reference to each until it finishes."""

    def __init__(
        self,
        requester: ProviderRequester,
        fallback: NonStreamFallback,
        reconciler: UsageReconciler,
        message_store: MessageStore,
        error_handler: Optional[ErrorHandlingService] = None,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        self.requester = requester
        self.fallback = fallback
        self.reconciler = reconciler
        self.message_store = message_store
        self.error_handler = error_handler or ErrorHandlingService()
        self.clock = clock
        self.logger = logger or get_logger(__name__)
        self._tasks: Set[asyncio.Task] = set()

    def start(self, job: RelayJob) -> EventChannel:
        """Spawn the relay task and return the channel the response body reads from."""
        channel = EventChannel(job.settings.channel_capacity)
        relay_run = RelayRun(self, job, channel)
        task = asyncio.create_task(relay_run.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return channel

    async def run(self, job: RelayJob, channel: EventChannel) -> 'RelayRun':
        """Run a relay to completion in the current task."""
        relay_run = RelayRun(self, job, channel)
        await relay_run.run()
        return relay_run

    async def wait_closed(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight relays, used on shutdown."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)


class RelayRun:
    """State of one client stream."""

    def __init__(self, relay: SseRelay, job: RelayJob, channel: EventChannel):
        self.relay = relay
        self.job = job
        self.channel = channel
        self.settings = job.settings
        self.logger = relay.logger
        self.clock = relay.clock
        self.context: RequestContext = get_request_context()

        self.state = RelayState.INIT
        self.events: List[StreamEvent] = []
        self.visible_parts: List[str] = []
        self.reasoning_state = ReasoningState()
        self.reasoning_enabled = job.request.reasoning.enabled
        self.tags = resolve_tags(self.settings.reasoning_tags_mode, self.settings.reasoning_custom_tags) if self.reasoning_enabled else ()

        self.provider_usage: Optional[UsageSnapshot] = None
        self.provider_usage_seen = False
        self.final_usage: Optional[UsageSnapshot] = None
        self.assistant_message_id: Optional[str] = None

        self.started_at = self.clock()
        self.first_chunk_at: Optional[float] = None
        self.last_byte_at: Optional[float] = None

    @property
    def visible_text(self) -> str:
        return ''.join(self.visible_parts)

    async def emit(self, event: StreamEvent) -> None:
        self.events.append(event)
        await self.channel.emit(event)

    async def run(self) -> None:
        set_request_context(self.context)
        signal = AbortSignal.with_deadline(self.settings.provider_timeout)
        heartbeat: Optional[asyncio.Task] = None
        try:
            await self.emit(StreamEvent.start(self.job.user_message_id))
            if self.settings.usage_emit and not self.settings.usage_provider_only:
                await self.emit(StreamEvent.usage(self.relay.reconciler.initial(self.job.prompt_tokens, self.job.context_limit)))

            self.state = RelayState.STREAMING
            heartbeat = asyncio.create_task(self._heartbeat(signal))
            self.started_at = self.clock()
            response = await self.relay.requester.send(self.job.provider_request, signal)
            try:
                await self._pump(response, signal)
            finally:
                await response.aclose()

            await self._stop_heartbeat(heartbeat)
            self.state = RelayState.DRAINING
            await self._drain()
            self.state = RelayState.COMPLETE
            await self._persist_completion()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._stop_heartbeat(heartbeat)
            self.state = RelayState.ERROR
            await self._handle_error(e)
        finally:
            await self._stop_heartbeat(heartbeat)
            signal.dispose()
            await self.channel.close()

    async def _pump(self, response: httpx.Response, signal: AbortSignal) -> None:
        decoder = StreamDecoder(self.job.provider_request.framing, logger=self.logger)
        chunks = response.aiter_bytes()
        self.last_byte_at = self.clock()

        while True:
            try:
                chunk = await signal.race(anext(chunks, None))
            except httpx.HTTPError as e:
                raise self.relay.error_handler.convert_httpx_exception(e) from e
            if chunk is None:
                break

            now = self.clock()
            self.last_byte_at = now
            if self.first_chunk_at is None:
                self.first_chunk_at = now

            for frame in decoder.feed(chunk):
                if frame.done:
                    return
                await self._apply(self.job.adapter.parse_chunk(frame.data))

        for frame in decoder.flush():
            if not frame.done:
                await self._apply(self.job.adapter.parse_chunk(frame.data))

    async def _apply(self, delta: ChunkDelta) -> None:
        """Flush one parsed unit: reasoning first, then visible content, stop, usage."""
        reasoning = ''
        visible = ''
        if self.reasoning_enabled and delta.reasoning:
            reasoning += delta.reasoning
        if delta.content:
            if self.tags:
                extracted = extract_by_tags(delta.content, self.tags, self.reasoning_state)
                visible = extracted.visible_delta
                reasoning += extracted.reasoning_delta
            else:
                visible = delta.content

        await self._emit_deltas(visible, reasoning)

        if delta.finish_reason:
            await self.emit(StreamEvent.stop(delta.finish_reason))

        if delta.usage is not None and delta.usage.is_valid:
            self.provider_usage = delta.usage
            self.provider_usage_seen = True
            if self.settings.usage_emit:
                snapshot = self.relay.reconciler.reconcile(delta.usage, self.job.prompt_tokens, '', self.job.context_limit)
                await self.emit(StreamEvent.usage(snapshot))

    async def _emit_deltas(self, visible: str, reasoning: str) -> None:
        if reasoning:
            self.reasoning_state.record(reasoning, self.clock())
            await self.emit(StreamEvent.reasoning(reasoning))
        if visible:
            self.visible_parts.append(visible)
            await self.emit(StreamEvent.content(visible))

    async def _drain(self) -> None:
        if self.tags:
            rest = flush(self.reasoning_state)
            await self._emit_deltas(rest.visible_delta, rest.reasoning_delta)

        if self.reasoning_enabled and self.reasoning_state.buffer.strip() and not self.reasoning_state.done_emitted:
            self.reasoning_state.done_emitted = True
            await self.emit(StreamEvent.reasoning_done(self.reasoning_state.duration_seconds(self.clock())))

        self.final_usage = self.relay.reconciler.reconcile(self.provider_usage, self.job.prompt_tokens, self.visible_text, self.job.context_limit)
        if self.settings.usage_emit and (not self.settings.usage_provider_only or not self.provider_usage_seen):
            await self.emit(StreamEvent.usage(self.final_usage))

        await self.emit(StreamEvent.complete())

    async def _heartbeat(self, signal: AbortSignal) -> None:
        """Ping the client every interval and abort the call once the upstream goes quiet.

        Before the first chunk the call gets `initial_grace` from its start, headers
        included. Once the body is being read, `idle_timeout` applies between bytes.
        """
        interval = self.settings.heartbeat_interval
        idle_timeout = self.settings.idle_timeout
        initial_grace = self.settings.initial_grace
        step = min(interval, idle_timeout, initial_grace) / 2
        next_ping = self.clock() + interval

        while not signal.aborted:
            await asyncio.sleep(step)
            now = self.clock()
            if self.first_chunk_at is None and now - self.started_at > initial_grace:
                self.logger.warning(f'No data from provider within {initial_grace:g}s of the call, aborting')
                signal.abort(UpstreamIdleTimeout(f'No data from provider within {initial_grace:g}s'))
                return
            if self.last_byte_at is not None and now - self.last_byte_at > idle_timeout:
                self.logger.warning(f'Upstream idle for more than {idle_timeout:g}s, aborting read')
                signal.abort(UpstreamIdleTimeout(f'No data from provider for {idle_timeout:g}s'))
                return
            if now >= next_ping:
                next_ping = now + interval
                await self.channel.ping()

    async def _stop_heartbeat(self, heartbeat: Optional[asyncio.Task]) -> None:
        if heartbeat is None or heartbeat.done():
            return
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat

    async def _handle_error(self, exc: Exception) -> None:
        message = exc.message if isinstance(exc, GatewayException) else str(exc) or exc.__class__.__name__
        self.logger.warning(f'Stream failed in state {self.state.value}: {message}', error_type=self.relay.error_handler.get_error_type(exc))

        if not self.visible_parts and await self._try_fallback():
            return

        await self.emit(StreamEvent.error(message))
        if self.visible_parts:
            await self._persist_partial()

    async def _try_fallback(self) -> bool:
        try:
            final = await self.relay.fallback.execute(
                self.job.adapter,
                self.job.request,
                self.job.connection,
                self.job.model.id,
                self.job.auth_headers,
                timeout=self.settings.provider_timeout,
            )
        except Exception as e:
            self.logger.error(f'Non-stream fallback raised: {e}', exc_info=True)
            return False
        if final is None:
            return False

        self.visible_parts.append(final.content)
        await self.emit(StreamEvent.content(final.content))
        await self.emit(StreamEvent.complete())
        self.final_usage = self.relay.reconciler.reconcile(final.usage, self.job.prompt_tokens, final.content, self.job.context_limit)
        self.state = RelayState.COMPLETE
        await self._persist_completion()
        return True

    async def _save_assistant_message(self) -> str:
        reasoning, duration = None, None
        if self.reasoning_enabled and self.settings.reasoning_save_to_db and self.reasoning_state.buffer.strip():
            reasoning, duration = self.reasoning_state.buffer, self.reasoning_state.duration_seconds(self.clock())
        try:
            message = await self.relay.message_store.create_assistant_message(
                self.job.session_id,
                self.visible_text,
                reasoning=reasoning,
                reasoning_duration=duration,
                parent_id=self.job.user_message_id,
            )
        except Exception as e:
            raise PersistenceError(f'Failed to persist assistant message: {e}') from e
        self.assistant_message_id = message.id
        return message.id

    async def _save_or_log(self) -> Optional[str]:
        try:
            return await self._save_assistant_message()
        except PersistenceError as e:
            self.logger.error(e.message, session_id=self.job.session_id, error_type=e.error_type, exc_info=True)
            return None

    async def _persist_completion(self) -> None:
        """One usage record per completed turn, linked to the assistant message when it was saved."""
        message_id = await self._save_or_log()
        metrics = compute_stream_metrics(self.started_at, self.first_chunk_at, self.clock(), self.final_usage.completion_tokens)
        await self.relay.reconciler.persist(
            self.final_usage,
            session_id=self.job.session_id,
            message_id=message_id,
            model=self.job.model.id,
            connection_id=self.job.connection.id,
            metrics=metrics,
        )

    async def _persist_partial(self) -> None:
        """Keep what the client already saw. No usage record for a failed turn."""
        await self._save_or_log()
