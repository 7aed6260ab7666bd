"""Creation of the sandboxes of a run according to the isolation policy."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Optional

import structlog

from .events import ID_ALL, AnyEvent, DoneEvent, ErrorEvent
from .ui import has_capability

if TYPE_CHECKING:
    from .orchestrator import Orchestrator

logger = structlog.get_logger(__name__)


def _finishes(sandbox_id: str):
    def predicate(event: AnyEvent) -> bool:
        return isinstance(event, (DoneEvent, ErrorEvent)) and event.id == sandbox_id
    return predicate


class RunDispatcher:
    """Creates sandboxes for a run.

    Shared mode creates one ``ID_ALL`` sandbox for every file and returns;
    completion is driven by channel events. Isolated mode creates one
    sandbox per file in the given order and waits for each to report done
    or error before creating the next, so only one sandbox is live at a time.
    """

    def __init__(self, orchestrator: "Orchestrator"):
        self.orchestrator = orchestrator
        self._watchdog: Optional[asyncio.Task] = None

    async def dispatch(self, files: list[str]) -> None:
        o = self.orchestrator
        o.tracker.initialize(files)

        container = await o.containers.resolve()
        if has_capability(o.ui, "reset_container"):
            o.ui.reset_container(container)

        self.cancel_watchdog()
        await o.registry.remove_all()

        viewport = o.config.browser.viewport
        if o.config.isolate is False:
            await self._run_shared(container, viewport.width, viewport.height)
        else:
            await self._run_isolated(container, files, viewport.width, viewport.height)

    async def _run_shared(self, container: Any, width: int, height: int) -> None:
        o = self.orchestrator
        sandbox = await o.registry.create(container, ID_ALL)
        await o.viewport.apply_viewport(sandbox, width, height)
        if o.config.sandbox_timeout is not None:
            self._watchdog = asyncio.create_task(
                self._watch_shared(o.runs_started, o.config.sandbox_timeout),
                name="shared-sandbox-watchdog",
            )

    async def _run_isolated(self, container: Any, files: list[str], width: int, height: int) -> None:
        o = self.orchestrator
        for file in files:
            # Subscribed before creation so a fast sandbox cannot finish unseen.
            finished = o.channel.wait_for(_finishes(file))
            try:
                sandbox = await o.registry.create(container, file)
                await o.viewport.apply_viewport(sandbox, width, height)
                await self._wait_finished(finished, file)
            finally:
                finished.cancel()
            logger.debug("Isolated sandbox finished", file=file)

    async def _wait_finished(self, finished: asyncio.Future, sandbox_id: str) -> None:
        timeout = self.orchestrator.config.sandbox_timeout
        if timeout is None:
            await finished
            return
        try:
            await asyncio.wait_for(finished, timeout)
        except asyncio.TimeoutError:
            await self.orchestrator.listener.expire(sandbox_id, timeout)

    async def _watch_shared(self, run: int, timeout: float) -> None:
        await asyncio.sleep(timeout)
        o = self.orchestrator
        if o.runs_started != run or o.tracker.is_empty():
            return
        try:
            await o.listener.expire(ID_ALL, timeout)
        except Exception as e:
            logger.error("Could not expire shared sandbox", error=str(e))

    def cancel_watchdog(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()
        self._watchdog = None
