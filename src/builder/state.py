"""Observable state of one builder session plus the actions the UI calls.

Every action catches its own failures: the error lands in `error`, the log and
a system chat line, and nothing propagates to the presentation layer. Partial
code already streamed into the buffer is kept.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from src.builder.config import editor_debounce_s
from src.builder.errors import CredentialMissing
from src.builder.types import (
    ChatMessage,
    ChatRole,
    GenerationMode,
    LogEntry,
    Screen,
    ValidationStatus,
)
from src.credentials.providers import ApiKeys, Provider, parse_provider
from src.credentials.validation import ValidatorRegistry
from src.generation import gemini_stream
from src.preview.debounce import Debouncer
from src.preview.session_manager import SandboxSessionManager
from src.sandbox_backends.factory import get_provider
from src.scrape import firecrawl

if TYPE_CHECKING:
    from src.credentials.store import CredentialStore
    from src.sandbox_backends.base import SandboxProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN_ERROR = "An unknown error occurred"


class _GenerationSuperseded(Exception):
    pass


class BuilderState:
    def __init__(
        self,
        store: CredentialStore,
        *,
        sandbox_provider: SandboxProvider | None = None,
        validators: ValidatorRegistry | None = None,
        sandbox_debounce_s: float | None = None,
        editor_debounce: float | None = None,
    ) -> None:
        self._store = store
        self._store.load()
        self._validators = validators or ValidatorRegistry.default()

        self.screen = Screen.HOME
        self.code = ""
        self.draft = ""
        self.chat_history: list[ChatMessage] = []
        self.is_loading = False
        self.error: str | None = None
        self.logs: list[LogEntry] = []
        self.validation: dict[Provider, ValidationStatus] = {
            p: ValidationStatus.IDLE for p in Provider
        }

        self._listeners: list[Callable[[], None]] = []
        self._epoch = 0
        self._generation_task: asyncio.Task[Any] | None = None
        self._validation_seq: dict[Provider, int] = {p: 0 for p in Provider}

        manager_kwargs: dict[str, Any] = {}
        if sandbox_debounce_s is not None:
            manager_kwargs["debounce_s"] = sandbox_debounce_s
        self.sandbox = SandboxSessionManager(
            sandbox_provider or get_provider(),
            get_code=lambda: self.code,
            get_api_key=lambda: self.api_keys.e2b,
            log=self.add_log,
            report_error=self._set_error,
            on_change=self._notify,
            **manager_kwargs,
        )
        self._editor = Debouncer(
            editor_debounce if editor_debounce is not None else editor_debounce_s,
            self._publish_draft,
            name="editor-publish",
        )

    # ── observation ──────────────────────────────────────────────────

    @property
    def api_keys(self) -> ApiKeys:
        return self._store.get()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State listener failed")

    def snapshot(self) -> dict[str, Any]:
        keys = self.api_keys
        return {
            "screen": self.screen.value,
            "code": self.code,
            "chat_history": [m.to_dict() for m in self.chat_history],
            "is_loading": self.is_loading,
            "error": self.error,
            "logs": [entry.render() for entry in self.logs],
            # Secrets never leave the process; only whether they are set.
            "configured_keys": {p.value: keys.has(p) for p in Provider},
            "validation": {p.value: s.value for p, s in self.validation.items()},
            "sandbox": {
                "status": self.sandbox.status.value,
                "url": self.sandbox.url,
            },
        }

    # ── small mutators ───────────────────────────────────────────────

    def add_log(self, message: str) -> None:
        self.logs.append(LogEntry(message))
        self._notify()

    def _set_error(self, message: str | None) -> None:
        self.error = message
        self._notify()

    def _append_chat(self, role: ChatRole, content: str) -> None:
        self.chat_history.append(ChatMessage(role=role, content=content))
        self._notify()

    def set_code(self, text: str) -> None:
        """Publish `text` as the shared buffer; feeds the sandbox debounce."""
        self.draft = text
        if text == self.code:
            return
        self.code = text
        self._notify()
        self.sandbox.notify_code_changed()

    def edit_code(self, text: str) -> None:
        """A keystroke-level edit; published after the editor quiet period."""
        self.draft = text
        self._editor.schedule(text)

    def _publish_draft(self, text: str) -> None:
        if text != self.code:
            self.set_code(text)

    # ── credentials ──────────────────────────────────────────────────

    def save_api_keys(self, keys: ApiKeys) -> bool:
        try:
            self._store.save(keys)
        except OSError as exc:
            logger.warning("Failed to persist API keys", exc_info=True)
            self._set_error(f"Failed to save API keys: {exc}")
            return False
        self.add_log("API Keys updated.")
        self.sandbox.notify_code_changed()
        return True

    async def validate_api_key(self, provider: str | Provider, key: str) -> bool:
        p = parse_provider(provider)
        if not (key or "").strip():
            return False
        self._validation_seq[p] += 1
        seq = self._validation_seq[p]
        self.validation[p] = ValidationStatus.VALIDATING
        self._notify()

        ok = await self._validators.validate(p, key)
        # An older probe must not overwrite the result of a newer one.
        if seq == self._validation_seq[p]:
            self.validation[p] = ValidationStatus.VALID if ok else ValidationStatus.INVALID
            self._notify()
        return ok

    # ── generation ───────────────────────────────────────────────────

    def _next_epoch(self) -> int:
        self._cancel_generation()
        self._epoch += 1
        return self._epoch

    def _cancel_generation(self) -> None:
        task = self._generation_task
        self._generation_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run_current(self, epoch: int, aw: Awaitable[T]) -> T:
        """Run one network step as a task that `leave_builder()` can cancel."""
        task: asyncio.Task[T] = asyncio.ensure_future(aw)
        self._generation_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and epoch != self._epoch:
                raise _GenerationSuperseded() from None
            raise
        finally:
            if self._generation_task is task:
                self._generation_task = None

    def _chunk_sink(self, epoch: int) -> Callable[[str], None]:
        parts: list[str] = []

        def _on_chunk(chunk: str) -> None:
            if epoch != self._epoch:
                return
            parts.append(chunk)
            self.set_code("".join(parts))

        return _on_chunk

    def _fail(self, epoch: int, label: str, exc: BaseException) -> None:
        if epoch != self._epoch:
            return
        message = str(exc) or UNKNOWN_ERROR
        self.error = message
        self.add_log(f"Error during {label}: {message}")
        self._append_chat("system", f"Error: {message}")

    async def start_generation(self, mode: GenerationMode | str, user_input: str) -> None:
        mode = mode if isinstance(mode, GenerationMode) else GenerationMode(str(mode).lower())
        epoch = self._next_epoch()
        self._editor.cancel()
        self.is_loading = True
        self.error = None
        self.logs = []
        self.code = ""
        self.draft = ""
        self.chat_history = [ChatMessage("system", "Starting new generation...")]
        self._notify()
        await self.sandbox.stop()

        try:
            keys = self.api_keys
            if not keys.has(Provider.GEMINI):
                raise CredentialMissing(
                    "gemini", "Gemini API Key not found. Please add it in settings."
                )
            if mode is GenerationMode.URL and not keys.has(Provider.FIRECRAWL):
                raise CredentialMissing(
                    "firecrawl",
                    "Firecrawl API Key not found. Please add it for URL recreation.",
                )

            on_chunk = self._chunk_sink(epoch)
            if mode is GenerationMode.PROMPT:
                user_message = f'New prompt: "{user_input}"'
                await self._run_current(
                    epoch,
                    gemini_stream.generate_from_prompt(keys.gemini, user_input, on_chunk),
                )
            else:
                user_message = f'Recreating from URL: "{user_input}"'
                self.add_log("Fetching and scraping URL content...")
                scraped = await self._run_current(
                    epoch, firecrawl.scrape_url(keys.firecrawl, user_input)
                )
                if epoch != self._epoch:
                    return
                self.add_log("Scraping complete. Generating code...")
                await self._run_current(
                    epoch,
                    gemini_stream.generate_from_url(
                        keys.gemini, user_input, scraped, on_chunk
                    ),
                )
            if epoch == self._epoch:
                self._append_chat("user", user_message)
                self._append_chat("model", "Code generation complete.")
        except _GenerationSuperseded:
            logger.info("Generation %d superseded", epoch)
        except Exception as exc:
            logger.info("Generation failed: %s", exc)
            self._fail(epoch, "generation", exc)
        finally:
            if epoch == self._epoch:
                self.is_loading = False
                self._notify()

    async def refine_code(self, message: str) -> None:
        epoch = self._next_epoch()
        self.is_loading = True
        self.error = None
        self._append_chat("user", message)

        try:
            keys = self.api_keys
            if not keys.has(Provider.GEMINI):
                raise CredentialMissing("gemini", "Gemini API key not configured.")
            await self._run_current(
                epoch,
                gemini_stream.generate_refinement(
                    keys.gemini, message, self.code, self._chunk_sink(epoch)
                ),
            )
            if epoch == self._epoch:
                self._append_chat("model", "Refinement complete.")
        except _GenerationSuperseded:
            logger.info("Refinement %d superseded", epoch)
        except Exception as exc:
            logger.info("Refinement failed: %s", exc)
            self._fail(epoch, "refinement", exc)
        finally:
            if epoch == self._epoch:
                self.is_loading = False
                self._notify()

    # ── sandbox + navigation ─────────────────────────────────────────

    async def start_sandbox(self) -> None:
        await self.sandbox.start()

    async def stop_sandbox(self) -> None:
        await self.sandbox.stop()

    def enter_builder(self) -> None:
        self.screen = Screen.BUILDER
        self._notify()

    async def leave_builder(self) -> None:
        """Back to the home view: drop any in-flight generation, tear down the preview."""
        self.screen = Screen.HOME
        if self.is_loading:
            self._next_epoch()
            self.is_loading = False
            self.add_log("Generation cancelled.")
        self._editor.cancel()
        self._notify()
        await self.sandbox.close()

    async def close(self) -> None:
        self._next_epoch()
        self._editor.cancel()
        await self.sandbox.close()
