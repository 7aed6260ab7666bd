"""Exceptions raised by the browser tester."""


class TesterError(Exception):
    """Base class for orchestration errors."""


class SandboxNotFoundError(TesterError):
    """A channel event referenced a sandbox that is not live."""

    def __init__(self, sandbox_id: str):
        super().__init__(f"Cannot find iframe with id {sandbox_id}")
        self.sandbox_id = sandbox_id


class SandboxTimeoutError(TesterError):
    """A sandbox reported neither done nor error in time."""

    def __init__(self, sandbox_id: str, timeout: float):
        super().__init__(f"Sandbox {sandbox_id} did not finish within {timeout:g}s")
        self.sandbox_id = sandbox_id
        self.timeout = timeout


class ContainerUnavailableError(TesterError):
    """No display container is available to host sandboxes."""


class HostRPCError(TesterError):
    """The controlling host rejected or failed an RPC call."""
