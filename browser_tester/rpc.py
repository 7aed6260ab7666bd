"""RPC surface of the controlling host process."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import httpx
import structlog

from .errors import HostRPCError

logger = structlog.get_logger(__name__)


class HostRPC(Protocol):
    """Calls the orchestrator makes into the controlling process."""

    def debug(self, *items: str) -> None:
        """Fire-and-forget diagnostic message."""

    async def finish_browser_tests(self) -> None:
        """The browser side of the run has concluded."""

    async def on_unhandled_error(self, error: Any, error_type: str) -> None:
        """Report a non-fatal orchestration level error."""

    async def drain(self) -> None:
        """Wait until every outstanding call has been delivered."""


def serialize_error(error: Any) -> Any:
    if isinstance(error, BaseException):
        return {"name": type(error).__name__, "message": str(error)}
    return error


class HttpHostRPC:
    """Host RPC over HTTP, one POST per call."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 20.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()

    def debug(self, *items: str) -> None:
        task = asyncio.create_task(self._call("debug", {"items": [str(i) for i in items]}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def finish_browser_tests(self) -> None:
        await self._call("finish", {})

    async def on_unhandled_error(self, error: Any, error_type: str) -> None:
        await self._call("unhandled-error", {"error": serialize_error(error), "type": error_type})

    async def drain(self) -> None:
        failures: list[BaseException] = []
        while self._pending:
            pending = list(self._pending)
            self._pending.difference_update(pending)
            results = await asyncio.gather(*pending, return_exceptions=True)
            failures.extend(r for r in results if isinstance(r, BaseException))
        if failures:
            logger.warning("Pending host calls failed", count=len(failures))
            raise HostRPCError(f"{len(failures)} pending host call(s) failed: {failures[0]}")

    async def _call(self, method: str, payload: dict[str, Any]) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = await self._client.post(
                f"{self.base_url}/rpc/{method}",
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise HostRPCError(f"rpc {method} failed: {e}") from e


class RecordingHostRPC:
    """In-memory host that keeps every call, used by the control server."""

    def __init__(self):
        self.debug_messages: list[tuple[str, ...]] = []
        self.errors: list[tuple[Any, str]] = []
        self.finished = 0
        self.drained = 0

    def debug(self, *items: str) -> None:
        self.debug_messages.append(tuple(str(i) for i in items))

    async def finish_browser_tests(self) -> None:
        self.finished += 1

    async def on_unhandled_error(self, error: Any, error_type: str) -> None:
        logger.warning("Unhandled error reported", error_type=error_type, error=serialize_error(error))
        self.errors.append((serialize_error(error), error_type))

    async def drain(self) -> None:
        self.drained += 1
