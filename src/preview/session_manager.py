"""Reconciles one remote preview session with the code buffer.

State machine::

    idle -> connecting -> running
               |            |
               +-> error <--+   (call failure, or remote exit)

At most one `start()` or `stop()` runs at a time; a `start()` that arrives while
either is in flight is dropped, not queued. `stop()` waits for an in-flight
`start()` and holds the in-flight marker until teardown finishes, so a late start
can never repopulate cleared handles.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from src.builder.config import sandbox_debounce_s, sandbox_port
from src.builder.errors import RemoteSessionLost
from src.builder.types import SandboxStatus
from src.preview.debounce import Debouncer
from src.sandbox_backends.base import SandboxProcess, SandboxProvider, SandboxSession

logger = logging.getLogger(__name__)

SERVED_FILE = "index.html"
SESSION_LOST_MESSAGE = "Sandbox connection lost. It may have timed out."


def _noop(*_args: object) -> None:
    return None


def preview_url(host: str, *, now_ms: int | None = None) -> str:
    # The timestamp forces the iframe to reload on every update.
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return f"https://{host}?_={stamp}"


class SandboxSessionManager:
    def __init__(
        self,
        provider: SandboxProvider,
        *,
        get_code: Callable[[], str],
        get_api_key: Callable[[], str],
        log: Callable[[str], None] = _noop,
        report_error: Callable[[str | None], None] = _noop,
        on_change: Callable[[], None] = _noop,
        port: int | None = None,
        debounce_s: float | Callable[[], float] = sandbox_debounce_s,
    ) -> None:
        self._provider = provider
        self._get_code = get_code
        self._get_api_key = get_api_key
        self._log = log
        self._report_error = report_error
        self._on_change = on_change
        self.port = sandbox_port() if port is None else int(port)

        self.status = SandboxStatus.IDLE
        self.url: str | None = None
        self.last_error: str | None = None

        self._session: SandboxSession | None = None
        self._process: SandboxProcess | None = None
        self._inflight: asyncio.Future[None] | None = None
        self._releasing: set[asyncio.Task[None]] = set()
        self._debouncer = Debouncer(debounce_s, self.start, name="sandbox-start")

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def _set_status(self, status: SandboxStatus) -> None:
        if self.status is not status:
            logger.debug("Sandbox status %s -> %s", self.status.value, status.value)
        self.status = status
        self._on_change()

    def _record_error(self, message: str) -> None:
        self.last_error = message
        self._log(message)
        self._report_error(message)

    def _server_line(self, prefix: str) -> Callable[[str], None]:
        def _emit(line: str) -> None:
            self._log(f"{prefix}: {str(line).rstrip()}")

        return _emit

    def _handle_exit(self, session: SandboxSession) -> None:
        if session is not self._session:
            return
        self._log("Sandbox session exited unexpectedly.")
        self._session = None
        self._process = None
        # The remote side may still be alive (e.g. a failed liveness check).
        task = asyncio.get_running_loop().create_task(self._release(session))
        self._releasing.add(task)
        task.add_done_callback(self._releasing.discard)
        self.url = None
        self.last_error = SESSION_LOST_MESSAGE
        self._report_error(SESSION_LOST_MESSAGE)
        self._set_status(SandboxStatus.ERROR)

    async def _release(self, session: SandboxSession) -> None:
        try:
            await session.kill()
        except Exception:
            logger.warning("Failed to release exited sandbox session", exc_info=True)

    def _ensure_current(self, session: SandboxSession) -> None:
        if session is not self._session:
            raise RemoteSessionLost(SESSION_LOST_MESSAGE)

    def notify_code_changed(self) -> None:
        """Schedule `start()` after the quiet period; a newer change reschedules."""
        if self._get_code() and self._get_api_key():
            self._debouncer.schedule()
        else:
            self._debouncer.cancel()

    async def wait_idle(self) -> None:
        await self._debouncer.wait()
        if self._inflight is not None:
            await asyncio.shield(self._inflight)
        if self._releasing:
            await asyncio.gather(*self._releasing, return_exceptions=True)

    async def start(self) -> None:
        code = self._get_code()
        api_key = (self._get_api_key() or "").strip()
        if not code or not api_key or self._inflight is not None:
            return

        inflight: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inflight = inflight
        self.last_error = None
        self._report_error(None)
        self._set_status(SandboxStatus.CONNECTING)
        self._log("Updating sandbox...")
        try:
            session = self._session
            if session is None:
                self._log("Creating new sandbox session...")
                session = await self._provider.create_session(api_key=api_key)
                self._session = session
                session.on_exit(lambda s=session: self._handle_exit(s))

            if self._process is None:
                self._log("Starting web server in sandbox...")
                process = await session.start_process(
                    f"python3 -m http.server {self.port}",
                    on_stdout=self._server_line("[Server]"),
                    on_stderr=self._server_line("[Server Error]"),
                )
                if session is not self._session:
                    await process.kill()
                    raise RemoteSessionLost(SESSION_LOST_MESSAGE)
                self._process = process

            await session.write_file(SERVED_FILE, code)
            self._ensure_current(session)

            self.url = preview_url(session.get_host(self.port))
            self._log("Sandbox preview updated.")
            self._set_status(SandboxStatus.RUNNING)
        except Exception as exc:
            logger.warning("Sandbox update failed: %s", exc, exc_info=True)
            self._record_error(f"Sandbox error: {exc}")
            self._set_status(SandboxStatus.ERROR)
            await self._teardown(keep_status=True)
        finally:
            self._inflight = None
            inflight.set_result(None)

    async def stop(self) -> None:
        while self._inflight is not None:
            await asyncio.shield(self._inflight)
        if self._session is None:
            return
        inflight: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inflight = inflight
        try:
            await self._teardown()
        finally:
            self._inflight = None
            inflight.set_result(None)

    async def close(self) -> None:
        self._debouncer.cancel()
        await self.stop()
        if self._releasing:
            await asyncio.gather(*self._releasing, return_exceptions=True)

    async def _teardown(self, *, keep_status: bool = False) -> None:
        session, process = self._session, self._process
        if session is None:
            return
        self._log("Closing sandbox connection...")
        # Clear first so a late exit notification for this session is ignored.
        self._session = None
        self._process = None
        self.url = None

        failure: Exception | None = None
        if process is not None:
            try:
                await process.kill()
            except Exception as exc:
                logger.warning("Failed to kill sandbox server process", exc_info=True)
                failure = exc
        try:
            await session.kill()
        except Exception as exc:
            logger.warning("Failed to kill sandbox session", exc_info=True)
            failure = failure or exc

        if failure is not None:
            self._record_error(f"Error closing sandbox: {failure}")
            self._set_status(SandboxStatus.ERROR)
            return
        self._log("Sandbox connection closed.")
        if keep_status:
            self._on_change()
        else:
            self._set_status(SandboxStatus.IDLE)
