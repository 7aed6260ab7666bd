"""Run lifecycle: one orchestration pass at a time, one finish per run."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

from .channel import SignalChannel
from .config import TesterConfig
from .container import ContainerResolver
from .dispatcher import RunDispatcher
from .events import AnyEvent
from .listener import ChannelListener
from .registry import SandboxRegistry
from .rpc import HostRPC, serialize_error
from .sandbox import SandboxFactory
from .tracker import CompletionTracker
from .ui import has_capability
from .viewport import ViewportCoordinator

logger = structlog.get_logger(__name__)


@dataclass
class BrowserState:
    """State shared with the host page; ``files`` seeds the first run."""
    files: list[str] = field(default_factory=list)


class Orchestrator:
    """Runs test files in sandboxes and tells the host when the run is over."""

    def __init__(
        self,
        config: TesterConfig,
        factory: SandboxFactory,
        rpc: HostRPC,
        ui: Optional[Any] = None,
        container: Optional[Any] = None,
        channel: Optional[SignalChannel] = None,
        state: Optional[BrowserState] = None,
    ):
        self.config = config
        self.rpc = rpc
        self.ui = ui
        self.state = state or BrowserState()

        self.channel = channel or SignalChannel()
        self.channel.on_handler_error = self._report_handler_error
        self.registry = SandboxRegistry(factory)
        self.tracker = CompletionTracker()
        self.viewport = ViewportCoordinator(ui)
        self.containers = ContainerResolver(container, ui_mode=config.browser.ui)
        self.dispatcher = RunDispatcher(self)
        self.listener = ChannelListener(self)

        self.runs_started = 0
        self.runs_finished = 0
        self._run_lock = asyncio.Lock()
        self._host_finished = False
        self._ui_released = False
        self._finished = asyncio.Event()

    async def __aenter__(self):
        try:
            await self.open()
        except Exception:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    def debug(self, *items: Any) -> None:
        if self.config.debug_enabled:
            self.rpc.debug(*(str(i) for i in items))

    async def open(self) -> None:
        """Start listening and run the files the host already asked for.

        Without files (a reloaded page) the host triggers ``request_run`` later.
        """
        files = list(self.state.files)
        self.debug("test files", ", ".join(files))
        self.tracker.initialize(files)

        self._listen()
        logger.info("Orchestrator opened", files=len(files), isolate=self.config.isolate)

        if files:
            await self.request_run(files)

    async def close(self) -> None:
        self.dispatcher.cancel_watchdog()
        self.channel.unsubscribe(self.listener.handle)
        await self.channel.close()
        await self.registry.remove_all()
        logger.info("Orchestrator closed", runs_finished=self.runs_finished)

    async def request_run(self, files: Iterable[str]) -> None:
        """Run ``files``; waits for any run already in flight to settle first."""
        files = list(files)
        self._listen()
        if self.in_flight:
            logger.info("Run queued behind the run in flight", files=len(files))
        async with self._run_lock:
            self._host_finished = False
            self._ui_released = False
            self._finished.clear()
            self.runs_started += 1
            logger.info("Run started", run=self.runs_started, files=len(files), isolate=self.config.isolate)
            await self.dispatcher.dispatch(files)

    async def finalize(self, notify_ui: bool = True) -> None:
        """Flush pending host calls, report the run finished, release the UI.

        The host is told once per run. A degraded finalize leaves the UI
        running, so a later normal finalize in the same run still releases it.
        """
        finish_host = not self._host_finished
        release_ui = notify_ui and not self._ui_released
        if not finish_host and not release_ui:
            logger.debug("Run already finalized", run=self.runs_started)
            return
        self._host_finished = True
        try:
            if finish_host:
                await self.rpc.drain()
                await self.rpc.finish_browser_tests()
        finally:
            if release_ui:
                self._ui_released = True
                if has_capability(self.ui, "run_tests_finish"):
                    self.ui.run_tests_finish()
            if finish_host:
                self.runs_finished += 1
                self._finished.set()
                logger.info("Run finished", run=self.runs_started, notify_ui=notify_ui)

    async def wait_finished(self) -> None:
        await self._finished.wait()

    def _listen(self) -> None:
        self.channel.subscribe(self.listener.handle)
        self.channel.start()

    async def _report_handler_error(self, event: AnyEvent, error: Exception) -> None:
        await self.rpc.on_unhandled_error(serialize_error(error), "Unhandled Error")
