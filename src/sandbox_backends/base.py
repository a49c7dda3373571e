from __future__ import annotations

from collections.abc import Callable
from typing import Protocol


class SandboxProcess(Protocol):
    """Handle to a long-running process inside a sandbox session."""

    async def kill(self) -> None: ...


class SandboxSession(Protocol):
    """One remote, ephemeral preview environment.

    Sessions must:
      - serve files written with `write_file` from the working directory of
        processes started with `start_process`
      - expose `get_host(port)` returning the externally reachable hostname
        (no scheme) for a port inside the session
      - call every `on_exit` callback at most once when the remote session goes
        away without `kill()` having been called
    """

    def on_exit(self, callback: Callable[[], None]) -> None: ...

    async def start_process(
        self,
        cmd: str,
        *,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> SandboxProcess: ...

    async def write_file(self, path: str, content: str) -> None: ...

    def get_host(self, port: int) -> str: ...

    async def kill(self) -> None: ...


class SandboxProvider(Protocol):
    async def create_session(self, *, api_key: str) -> SandboxSession: ...
