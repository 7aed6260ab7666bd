"""In-process signal channel between the orchestrator and its sandboxes."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from .events import AnyEvent, parse_event, to_wire

logger = structlog.get_logger(__name__)

EventHandler = Callable[[AnyEvent], Awaitable[None]]
OutboundHandler = Callable[[dict[str, Any]], Any]
HandlerErrorHook = Callable[[AnyEvent, Exception], Awaitable[None]]


class SignalChannel:
    """Broadcast channel carrying sandbox events.

    Inbound messages are queued by ``publish`` and handed to the subscribed
    handlers by a single pump task, one message at a time and in arrival
    order. Outbound messages (``post``) go straight to the outbound
    subscribers, which forward them into the sandboxes.
    """

    def __init__(self, on_handler_error: Optional[HandlerErrorHook] = None):
        self.on_handler_error = on_handler_error
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handlers: list[EventHandler] = []
        self._outbound: list[OutboundHandler] = []
        self._waiters: list[tuple[Callable[[AnyEvent], bool], asyncio.Future]] = []
        self._pump: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def on_outbound(self, handler: OutboundHandler) -> None:
        self._outbound.append(handler)

    def publish(self, payload: Any) -> None:
        """Queue an inbound message coming from a sandbox."""
        self._queue.put_nowait(parse_event(payload))

    def wait_for(self, predicate: Callable[[AnyEvent], bool]) -> asyncio.Future:
        """Future resolved with the next inbound event matching ``predicate``.

        Waiters are resolved after the subscribed handlers have processed the
        event, so whoever awaits the future observes their side effects.
        """
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((predicate, future))
        return future

    async def post(self, message: BaseModel | dict[str, Any]) -> None:
        """Send an outbound message to every sandbox."""
        wire = to_wire(message) if isinstance(message, BaseModel) else dict(message)
        for handler in list(self._outbound):
            result = handler(wire)
            if inspect.isawaitable(result):
                await result

    def start(self) -> None:
        if not self.running:
            self._pump = asyncio.create_task(self._run(), name="signal-channel-pump")

    async def join(self) -> None:
        """Wait until every queued inbound message has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        for _, future in self._waiters:
            future.cancel()
        self._waiters.clear()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                for handler in list(self._handlers):
                    try:
                        await handler(event)
                    except Exception as e:
                        logger.error("Channel handler failed", event_type=event.type, error=str(e))
                        await self._report(event, e)
            finally:
                self._resolve_waiters(event)
                self._queue.task_done()

    async def _report(self, event: AnyEvent, error: Exception) -> None:
        if self.on_handler_error is None:
            return
        try:
            await self.on_handler_error(event, error)
        except Exception as e:
            logger.error("Could not report channel handler failure", error=str(e))

    def _resolve_waiters(self, event: AnyEvent) -> None:
        pending = []
        for predicate, future in self._waiters:
            if future.done():
                continue
            if predicate(event):
                future.set_result(event)
            else:
                pending.append((predicate, future))
        self._waiters = pending
