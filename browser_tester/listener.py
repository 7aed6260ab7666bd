"""Routing of sandbox events to the run state."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from .errors import SandboxNotFoundError, SandboxTimeoutError
from .events import (
    ID_ALL,
    AnyEvent,
    DoneEvent,
    ErrorEvent,
    UnknownEvent,
    ViewportAckEvent,
    ViewportEvent,
    to_wire,
)
from .rpc import serialize_error
from .ui import generate_file_id, has_capability

if TYPE_CHECKING:
    from .orchestrator import Orchestrator

logger = structlog.get_logger(__name__)


class ChannelListener:
    """Single entry point for messages arriving from sandboxes.

    Events for sandboxes that are already gone are tolerated; only a
    viewport request for an unknown sandbox is reported, and it is answered
    with ``viewport:fail`` so the sandbox does not wait forever.
    """

    def __init__(self, orchestrator: "Orchestrator"):
        self.orchestrator = orchestrator

    async def handle(self, event: AnyEvent) -> None:
        self.orchestrator.debug("channel event", json.dumps(to_wire(event), default=str))
        logger.debug("Channel event", event_type=event.type, sandbox_id=getattr(event, "id", None))

        if isinstance(event, ViewportEvent):
            await self._on_viewport(event)
        elif isinstance(event, DoneEvent):
            await self._on_done(event)
        elif isinstance(event, ErrorEvent):
            await self._on_error(event)
        elif isinstance(event, ViewportAckEvent):
            # Our own acknowledgements echoed back by a sandbox bridge.
            return
        else:
            await self._on_unexpected(event)

    async def _on_viewport(self, event: ViewportEvent) -> None:
        o = self.orchestrator
        sandbox = o.registry.get(event.id)
        if sandbox is None:
            error = SandboxNotFoundError(event.id)
            await o.channel.post(ViewportAckEvent.fail(event.id, str(error)))
            await o.rpc.on_unhandled_error(
                {"name": "Teardown Error", "message": str(error)}, "Teardown Error"
            )
            return
        try:
            await o.viewport.apply_viewport(sandbox, event.width, event.height)
        except Exception as e:
            logger.error("Viewport request failed", sandbox_id=event.id, error=str(e))
            await o.channel.post(ViewportAckEvent.fail(event.id, str(e)))
            await o.rpc.on_unhandled_error(serialize_error(e), "Viewport Error")
            return
        await o.channel.post(ViewportAckEvent.done(event.id))

    async def _on_done(self, event: DoneEvent) -> None:
        o = self.orchestrator
        o.tracker.mark_done(event.filenames)
        if o.tracker.is_empty():
            # The UI is not touched while isolated files run; select at the end.
            if has_capability(o.ui, "set_current_file_id") and len(event.filenames) > 1:
                o.ui.set_current_file_id(
                    generate_file_id(event.filenames[-1], o.config.root, o.config.name)
                )
            await o.finalize()
        elif event.id != ID_ALL:
            # keep the last sandbox
            await o.registry.remove(event.id)

    async def _on_error(self, event: ErrorEvent) -> None:
        o = self.orchestrator
        await o.registry.remove(event.id)
        logger.warning("Sandbox failed", sandbox_id=event.id, error_type=event.error_type)
        await o.rpc.on_unhandled_error(event.error, event.error_type)
        if event.id == ID_ALL:
            o.tracker.mark_all_done()
        else:
            o.tracker.mark_done([event.id])
        if o.tracker.is_empty():
            await o.finalize()

    async def _on_unexpected(self, event: UnknownEvent) -> None:
        logger.warning("Unexpected channel event", event_type=event.type)
        await self.orchestrator.rpc.on_unhandled_error(
            {"name": "Unexpected Event", "message": f"Unexpected event: {event.type}"},
            "Unexpected Event",
        )
        await self.orchestrator.finalize(notify_ui=False)

    async def expire(self, sandbox_id: str, timeout: float) -> None:
        """Force a silent sandbox out of the run."""
        o = self.orchestrator
        error = SandboxTimeoutError(sandbox_id, timeout)
        logger.warning("Sandbox timed out", sandbox_id=sandbox_id, timeout=timeout)
        await o.registry.remove(sandbox_id)
        await o.rpc.on_unhandled_error({"name": "Timeout Error", "message": str(error)}, "Timeout Error")
        if sandbox_id == ID_ALL:
            o.tracker.mark_all_done()
        else:
            o.tracker.mark_done([sandbox_id])
        if o.tracker.is_empty():
            await o.finalize()
