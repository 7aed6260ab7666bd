from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from browser_tester.config import BrowserConfig, TesterConfig
from browser_tester.orchestrator import BrowserState, Orchestrator
from browser_tester.rpc import RecordingHostRPC
from browser_tester.sandbox import sandbox_src


class FakeSandbox:
    def __init__(self, sandbox_id: str, container: Any, log: list[tuple[str, str]]):
        self.id = sandbox_id
        self.src = sandbox_src("/", sandbox_id)
        self.container = container
        self.size: Optional[tuple[int, int]] = None
        self.started = False
        self.removed = 0
        self._log = log

    async def start(self) -> None:
        self.started = True

    async def set_size(self, width: int, height: int) -> None:
        self.size = (width, height)

    async def remove(self) -> None:
        self.removed += 1
        self._log.append(("remove", self.id))


class FakeSandboxFactory:
    def __init__(self) -> None:
        self.created: list[FakeSandbox] = []
        self.log: list[tuple[str, str]] = []

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self.created]

    async def create(self, container: Any, sandbox_id: str) -> FakeSandbox:
        sandbox = FakeSandbox(sandbox_id, container, self.log)
        self.created.append(sandbox)
        self.log.append(("create", sandbox_id))
        return sandbox


class FakeUI:
    def __init__(self) -> None:
        self.viewports: list[tuple[int, int]] = []
        self.file_ids: list[str] = []
        self.containers: list[Any] = []
        self.finished = 0

    async def set_iframe_viewport(self, width: int, height: int) -> None:
        self.viewports.append((width, height))

    def set_current_file_id(self, file_id: str) -> None:
        self.file_ids.append(file_id)

    def reset_container(self, container: Any) -> None:
        self.containers.append(container)

    def run_tests_finish(self) -> None:
        self.finished += 1


@pytest.fixture()
def factory() -> FakeSandboxFactory:
    return FakeSandboxFactory()


@pytest.fixture()
def host() -> RecordingHostRPC:
    return RecordingHostRPC()


@pytest.fixture()
def make_orchestrator(factory: FakeSandboxFactory, host: RecordingHostRPC) -> Callable[..., Orchestrator]:
    def _make(
        *,
        isolate: bool = True,
        ui: Any = None,
        ui_mode: bool = False,
        timeout: Optional[float] = None,
        env: Optional[dict[str, str]] = None,
        files: Optional[list[str]] = None,
        rpc: Any = None,
    ) -> Orchestrator:
        config = TesterConfig(
            name="web",
            root="/repo",
            isolate=isolate,
            sandbox_timeout=timeout,
            env=env or {},
            browser=BrowserConfig(ui=ui_mode),
        )
        return Orchestrator(
            config,
            factory,
            rpc or host,
            ui=ui,
            container="tester-container",
            state=BrowserState(files=list(files or [])),
        )

    return _make


@pytest.fixture()
def wait_until() -> Callable[..., Any]:
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while not predicate():
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_poll(), timeout)

    return _wait
