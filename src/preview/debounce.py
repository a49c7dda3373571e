from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class Debouncer:
    """Trailing-edge debounce on the running event loop.

    Every `schedule()` cancels the pending call and restarts the quiet period;
    only the last call's arguments are used. A call that already fired is never
    cancelled by a later `schedule()`.
    """

    def __init__(
        self,
        delay_s: float | Callable[[], float],
        fn: Callable[..., Awaitable[Any] | Any],
        *,
        name: str = "debounce",
    ) -> None:
        self._delay = delay_s
        self._fn = fn
        self._name = name
        self._pending: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _delay_s(self) -> float:
        return float(self._delay() if callable(self._delay) else self._delay)

    def schedule(self, *args: Any, **kwargs: Any) -> None:
        self.cancel()
        task = asyncio.get_running_loop().create_task(
            self._fire(self._delay_s(), args, kwargs), name=self._name
        )
        self._pending = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def wait(self) -> None:
        """Wait until the pending call (if any) and fired calls have finished."""
        while True:
            live = [t for t in self._running if not t.done()]
            if not live:
                return
            await asyncio.gather(*live, return_exceptions=True)

    async def _fire(self, delay: float, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        await asyncio.sleep(delay)
        if self._pending is asyncio.current_task():
            self._pending = None
        try:
            result = self._fn(*args, **kwargs)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception("Debounced call %s failed", self._name)
