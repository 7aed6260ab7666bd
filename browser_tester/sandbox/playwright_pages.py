"""Sandboxes backed by Playwright pages.

The display container is a ``BrowserContext``; every sandbox is a page of
that context. Pages talk to the orchestrator through an exposed binding
(inbound) and a receive hook evaluated in the page (outbound).
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urljoin

import structlog
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from ..channel import SignalChannel
from . import sandbox_src

logger = structlog.get_logger(__name__)

POST_BINDING = "__tester_channel_post__"
RECEIVE_HOOK = "__tester_channel_receive__"


class PageSandbox:
    """One sandbox page."""

    def __init__(self, sandbox_id: str, src: str, url: str, page: Page, goto_timeout: float):
        self.id = sandbox_id
        self.src = src
        self.url = url
        self.page = page
        self.goto_timeout = goto_timeout
        self.removed = False

    async def start(self) -> None:
        await self.page.goto(self.url, wait_until="commit", timeout=self.goto_timeout * 1000)

    async def set_size(self, width: int, height: int) -> None:
        await self.page.set_viewport_size({"width": int(width), "height": int(height)})

    async def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        try:
            await self.page.close()
        except PlaywrightError as e:
            logger.warning("Could not close sandbox page", sandbox_id=self.id, error=str(e))

    async def deliver(self, message: dict[str, Any]) -> None:
        if self.removed or self.page.is_closed():
            return
        await self.page.evaluate(
            f"(message) => window.{RECEIVE_HOOK} && window.{RECEIVE_HOOK}(message)",
            message,
        )


class PlaywrightSandboxFactory:
    """Creates sandbox pages wired to a signal channel."""

    def __init__(
        self,
        channel: SignalChannel,
        base_url: str,
        base_path: str = "/",
        goto_timeout: float = 30.0,
    ):
        self.channel = channel
        self.base_url = base_url
        self.base_path = base_path
        self.goto_timeout = goto_timeout
        self._pages: list[PageSandbox] = []
        channel.on_outbound(self._forward)

    async def create(self, container: BrowserContext, sandbox_id: str) -> PageSandbox:
        page = await container.new_page()
        await page.expose_binding(POST_BINDING, self._receive)
        src = sandbox_src(self.base_path, sandbox_id)
        sandbox = PageSandbox(sandbox_id, src, urljoin(self.base_url, src), page, self.goto_timeout)
        self._pages.append(sandbox)
        return sandbox

    def _receive(self, source: Any, payload: Any) -> None:
        self.channel.publish(payload)

    async def _forward(self, message: dict[str, Any]) -> None:
        self._pages = [p for p in self._pages if not p.removed]
        target = message.get("id")
        for sandbox in list(self._pages):
            if target is not None and sandbox.id != target:
                continue
            try:
                await sandbox.deliver(message)
            except PlaywrightError as e:
                logger.warning("Could not deliver channel message", sandbox_id=sandbox.id, error=str(e))
