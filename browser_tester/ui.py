"""Optional tester UI adapter and the file ids it understands."""

from __future__ import annotations

import os
from typing import Any, Optional, Protocol


class UIAdapter(Protocol):
    """Capabilities a tester UI may offer.

    Every method is optional; callers check for it with ``has_capability``.
    """

    def set_current_file_id(self, file_id: str) -> None: ...

    async def set_iframe_viewport(self, width: int, height: int) -> None: ...

    def run_tests_finish(self) -> None: ...

    def reset_container(self, container: Any) -> None: ...


def has_capability(ui: Optional[Any], name: str) -> bool:
    return ui is not None and callable(getattr(ui, name, None))


def generate_hash(text: str) -> str:
    """32-bit string hash used by the tester UI to key files."""
    value = 0
    units = text.encode("utf-16-le")
    for i in range(0, len(units), 2):
        value = (value << 5) - value + int.from_bytes(units[i:i + 2], "little")
        value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return str(value)


def generate_file_id(file: str, root: str, project: str = "") -> str:
    path = os.path.relpath(file, root).replace(os.sep, "/")
    return generate_hash(f"{path}{project}")
