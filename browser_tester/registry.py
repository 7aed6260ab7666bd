"""Live sandboxes keyed by file path or the shared-run sentinel."""

from __future__ import annotations

from typing import Any, Iterator, Optional

import structlog

from .sandbox import Sandbox, SandboxFactory

logger = structlog.get_logger(__name__)


class SandboxRegistry:
    """Owns creation and teardown of sandboxes; at most one live sandbox per id."""

    def __init__(self, factory: SandboxFactory):
        self.factory = factory
        self._sandboxes: dict[str, Sandbox] = {}

    def __contains__(self, sandbox_id: str) -> bool:
        return sandbox_id in self._sandboxes

    def __len__(self) -> int:
        return len(self._sandboxes)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sandboxes))

    def get(self, sandbox_id: str) -> Optional[Sandbox]:
        return self._sandboxes.get(sandbox_id)

    async def create(self, container: Any, sandbox_id: str) -> Sandbox:
        """Create a sandbox for ``sandbox_id``, replacing any live one."""
        await self.remove(sandbox_id)
        sandbox = await self.factory.create(container, sandbox_id)
        # Registered before it loads so early channel events can resolve it.
        self._sandboxes[sandbox_id] = sandbox
        try:
            await sandbox.start()
        except Exception:
            if self._sandboxes.get(sandbox_id) is sandbox:
                del self._sandboxes[sandbox_id]
            await sandbox.remove()
            raise
        logger.debug("Sandbox created", sandbox_id=sandbox_id, src=sandbox.src)
        return sandbox

    async def remove(self, sandbox_id: str) -> None:
        sandbox = self._sandboxes.pop(sandbox_id, None)
        if sandbox is None:
            return
        await sandbox.remove()
        logger.debug("Sandbox removed", sandbox_id=sandbox_id)

    async def remove_all(self) -> None:
        sandboxes = list(self._sandboxes.values())
        self._sandboxes.clear()
        for sandbox in sandboxes:
            await sandbox.remove()
        if sandboxes:
            logger.debug("Sandboxes cleared", count=len(sandboxes))
