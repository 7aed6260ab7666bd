"""Sizing of sandboxes, directly or through the tester UI."""

from __future__ import annotations

from typing import Any, Optional

import structlog

from .sandbox import Sandbox
from .ui import has_capability

logger = structlog.get_logger(__name__)


class ViewportCoordinator:
    """Applies a width and height to a sandbox.

    When a UI adapter is present it owns the layout and is asked to resize;
    otherwise the sandbox box is sized directly. Adapter failures propagate.
    """

    def __init__(self, ui: Optional[Any] = None):
        self.ui = ui

    async def apply_viewport(self, sandbox: Sandbox, width: int, height: int) -> None:
        if has_capability(self.ui, "set_iframe_viewport"):
            await self.ui.set_iframe_viewport(width, height)
        else:
            await sandbox.set_size(width, height)
        logger.debug("Viewport applied", sandbox_id=sandbox.id, width=width, height=height)
