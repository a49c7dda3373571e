"""E2B-hosted preview sessions.

Wraps the `e2b` async SDK behind the small session protocol in `base.py`.
The SDK does not push a notification when a sandbox times out, so each
session runs a liveness poll and reports the loss through `on_exit`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from src.builder.config import sandbox_heartbeat_s, sandbox_template

logger = logging.getLogger(__name__)


class E2BProcess:
    def __init__(self, handle: Any) -> None:
        self._handle = handle

    async def kill(self) -> None:
        await self._handle.kill()


class E2BSession:
    def __init__(self, sandbox: Any, *, heartbeat_s: int | None = None) -> None:
        self._sandbox = sandbox
        self._exit_callbacks: list[Callable[[], None]] = []
        self._closed = False
        self._exited = False
        interval = sandbox_heartbeat_s() if heartbeat_s is None else heartbeat_s
        self._heartbeat: asyncio.Task[None] | None = None
        if interval > 0:
            self._heartbeat = asyncio.create_task(self._watch(interval))

    @property
    def sandbox_id(self) -> str:
        return str(getattr(self._sandbox, "sandbox_id", ""))

    def on_exit(self, callback: Callable[[], None]) -> None:
        self._exit_callbacks.append(callback)

    def _fire_exit(self) -> None:
        if self._closed or self._exited:
            return
        self._exited = True
        for cb in list(self._exit_callbacks):
            try:
                cb()
            except Exception:
                logger.exception("Sandbox exit callback failed (id=%s)", self.sandbox_id)

    async def _watch(self, interval: int) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            if self._closed:
                return
            try:
                alive = bool(await self._sandbox.is_running())
            except Exception:
                # Unknown is not gone; check again next interval.
                logger.warning(
                    "Sandbox liveness check failed (id=%s)", self.sandbox_id, exc_info=True
                )
                continue
            if not alive:
                logger.info("Sandbox %s is no longer running", self.sandbox_id)
                self._fire_exit()
                return

    async def start_process(
        self,
        cmd: str,
        *,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> E2BProcess:
        handle = await self._sandbox.commands.run(
            cmd,
            background=True,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
        )
        return E2BProcess(handle)

    async def write_file(self, path: str, content: str) -> None:
        await self._sandbox.files.write(path, content)

    def get_host(self, port: int) -> str:
        return str(self._sandbox.get_host(port))

    async def kill(self) -> None:
        self._closed = True
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat
            self._heartbeat = None
        await self._sandbox.kill()


class E2BSandboxProvider:
    def __init__(self, *, template: str | None = None) -> None:
        self.template = template if template is not None else sandbox_template()

    async def create_session(self, *, api_key: str) -> E2BSession:
        from e2b import AsyncSandbox

        kwargs: dict[str, Any] = {"api_key": api_key}
        if self.template:
            kwargs["template"] = self.template
        sandbox = await AsyncSandbox.create(**kwargs)
        logger.info("Created E2B sandbox: %s", getattr(sandbox, "sandbox_id", "?"))
        return E2BSession(sandbox)
