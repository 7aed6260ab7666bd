"""Sandboxes hosting test files.

A sandbox is an isolated browsing context whose content source is derived
from its identifier, so creating it again always forces a fresh navigation.
What runs inside it is the test runner's business; the orchestrator only
creates, sizes and tears sandboxes down.
"""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote


class Sandbox(Protocol):
    id: str
    src: str

    async def start(self) -> None:
        """Begin loading the sandbox content."""

    async def set_size(self, width: int, height: int) -> None:
        """Resize the sandbox's own box."""

    async def remove(self) -> None:
        """Tear the sandbox down. Calling it twice is harmless."""


class SandboxFactory(Protocol):
    async def create(self, container: Any, sandbox_id: str) -> Sandbox: ...


def sandbox_src(base_path: str, sandbox_id: str) -> str:
    base = base_path if base_path.endswith("/") else f"{base_path}/"
    return f"{base}__tester__/__test__/{quote(sandbox_id, safe='')}"


__all__ = ["Sandbox", "SandboxFactory", "sandbox_src"]
