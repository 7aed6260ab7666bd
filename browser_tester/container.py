"""Resolution of the display container that hosts sandboxes."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from .errors import ContainerUnavailableError

logger = structlog.get_logger(__name__)


class ContainerResolver:
    """Hands out the container sandboxes are created in.

    Headless runs use the default container. In UI mode the container only
    exists once the UI has mounted, so ``resolve`` waits for ``attach``.
    """

    def __init__(self, default: Optional[Any] = None, ui_mode: bool = False):
        self.default = default
        self.ui_mode = ui_mode
        self._ui_container: Optional[Any] = None
        self._attached = asyncio.Event()

    def attach(self, container: Any) -> None:
        self._ui_container = container
        self._attached.set()
    async def resolve(self) -> Any:
        if self.ui_mode:
            if not self._attached.is_set():
                logger.info("Waiting for tester UI container")
            await self._attached.wait()
            return self._ui_container
        if self.default is None:
            raise ContainerUnavailableError("No tester container configured")
        return self.default
