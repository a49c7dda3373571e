from __future__ import annotations

import asyncio

from src.builder import state as state_mod
from src.builder.errors import GenerationError
from src.builder.state import BuilderState
from src.builder.types import GenerationMode, SandboxStatus, Screen, ValidationStatus
from src.credentials.providers import ApiKeys, Provider
from src.credentials.store import CredentialStore
from src.preview.session_manager import SERVED_FILE


class _FakeSession:
    def __init__(self) -> None:
        self.writes: list[str] = []
        self.killed = False

    def on_exit(self, cb) -> None:
        pass

    async def start_process(self, cmd, *, on_stdout=None, on_stderr=None):
        return self

    async def write_file(self, path: str, content: str) -> None:
        assert path == SERVED_FILE
        self.writes.append(content)

    def get_host(self, port: int) -> str:
        return "sbx.test"

    async def kill(self) -> None:
        self.killed = True


class _FakeSandboxProvider:
    def __init__(self) -> None:
        self.sessions: list[_FakeSession] = []

    async def create_session(self, *, api_key: str) -> _FakeSession:
        s = _FakeSession()
        self.sessions.append(s)
        return s


def _state(tmp_path, keys: ApiKeys | None = None, **kwargs) -> BuilderState:
    store = CredentialStore(tmp_path / "keys.json")
    if keys is not None:
        store.save(keys)
    kwargs.setdefault("sandbox_provider", _FakeSandboxProvider())
    kwargs.setdefault("sandbox_debounce_s", 0.01)
    kwargs.setdefault("editor_debounce", 0.01)
    return BuilderState(store, **kwargs)


def _streaming(chunks: list[str], calls: list[tuple] | None = None):
    async def _gen(api_key, *args):
        on_chunk = args[-1]
        if calls is not None:
            calls.append((api_key, *args[:-1]))
        for c in chunks:
            on_chunk(c)
            await asyncio.sleep(0)
        return "".join(chunks)

    return _gen


def test_prompt_generation_streams_into_buffer(tmp_path, monkeypatch) -> None:
    calls: list[tuple] = []
    monkeypatch.setattr(
        state_mod.gemini_stream,
        "generate_from_prompt",
        _streaming(["<html>", "</html>"], calls),
    )
    s = _state(tmp_path, ApiKeys(gemini="g"))
    seen_codes: list[str] = []
    s.subscribe(lambda: seen_codes.append(s.code))

    asyncio.run(s.start_generation(GenerationMode.PROMPT, "a landing page"))

    assert calls == [("g", "a landing page")]
    assert s.code == "<html></html>"
    assert "<html>" in seen_codes
    assert s.is_loading is False
    assert s.error is None
    assert [(m.role, m.content) for m in s.chat_history] == [
        ("system", "Starting new generation..."),
        ("user", 'New prompt: "a landing page"'),
        ("model", "Code generation complete."),
    ]


def test_missing_gemini_key_reports_error_without_calling_out(tmp_path, monkeypatch) -> None:
    calls: list[tuple] = []
    monkeypatch.setattr(
        state_mod.gemini_stream, "generate_from_prompt", _streaming(["x"], calls)
    )
    s = _state(tmp_path)

    asyncio.run(s.start_generation("prompt", "anything"))

    assert calls == []
    assert s.error == "Gemini API Key not found. Please add it in settings."
    assert s.chat_history[-1].role == "system"
    assert s.chat_history[-1].content == f"Error: {s.error}"
    assert any("Error during generation:" in e.text for e in s.logs)
    assert s.is_loading is False


def test_url_mode_requires_scrape_key(tmp_path, monkeypatch) -> None:
    scraped: list[str] = []

    async def _scrape(api_key, url):
        scraped.append(url)
        return "content"

    monkeypatch.setattr(state_mod.firecrawl, "scrape_url", _scrape)
    s = _state(tmp_path, ApiKeys(gemini="g"))

    asyncio.run(s.start_generation(GenerationMode.URL, "https://example.com"))

    assert scraped == []
    assert s.error == "Firecrawl API Key not found. Please add it for URL recreation."


def test_url_mode_scrapes_then_generates(tmp_path, monkeypatch) -> None:
    calls: list[tuple] = []

    async def _scrape(api_key, url):
        assert api_key == "fc"
        return "# Example Domain"

    monkeypatch.setattr(state_mod.firecrawl, "scrape_url", _scrape)
    monkeypatch.setattr(
        state_mod.gemini_stream, "generate_from_url", _streaming(["<p>hi</p>"], calls)
    )
    s = _state(tmp_path, ApiKeys(gemini="g", firecrawl="fc"))

    asyncio.run(s.start_generation(GenerationMode.URL, "https://example.com"))

    assert calls == [("g", "https://example.com", "# Example Domain")]
    assert s.code == "<p>hi</p>"
    texts = [e.text for e in s.logs]
    assert texts.index("Fetching and scraping URL content...") < texts.index(
        "Scraping complete. Generating code..."
    )
    assert s.chat_history[1].content == 'Recreating from URL: "https://example.com"'


def test_failure_keeps_partially_streamed_code(tmp_path, monkeypatch) -> None:
    async def _gen(api_key, prompt, on_chunk):
        on_chunk("<html>")
        raise GenerationError("Failed to generate content from AI (HTTP 503).")

    monkeypatch.setattr(state_mod.gemini_stream, "generate_from_prompt", _gen)
    s = _state(tmp_path, ApiKeys(gemini="g"))

    asyncio.run(s.start_generation("prompt", "p"))

    assert s.code == "<html>"
    assert s.error == "Failed to generate content from AI (HTTP 503)."
    assert s.is_loading is False


def test_refinement_sends_current_code_and_replaces_buffer(tmp_path, monkeypatch) -> None:
    calls: list[tuple] = []
    monkeypatch.setattr(
        state_mod.gemini_stream,
        "generate_refinement",
        _streaming(["<html>", "blue", "</html>"], calls),
    )
    s = _state(tmp_path, ApiKeys(gemini="g"))

    async def _run() -> None:
        s.set_code("<html>red</html>")
        await s.refine_code("make it blue")

    asyncio.run(_run())

    assert calls == [("g", "make it blue", "<html>red</html>")]
    assert s.code == "<html>blue</html>"
    assert [(m.role, m.content) for m in s.chat_history] == [
        ("user", "make it blue"),
        ("model", "Refinement complete."),
    ]


def test_refinement_without_key(tmp_path) -> None:
    s = _state(tmp_path)
    asyncio.run(s.refine_code("tweak"))
    assert s.error == "Gemini API key not configured."
    assert s.chat_history[-1].content == "Error: Gemini API key not configured."


def test_leaving_builder_discards_late_chunks(tmp_path, monkeypatch) -> None:
    captured: dict = {}

    async def _gen(api_key, prompt, on_chunk):
        captured["on_chunk"] = on_chunk
        on_chunk("<html>")
        await captured["release"].wait()
        on_chunk("never")

    monkeypatch.setattr(state_mod.gemini_stream, "generate_from_prompt", _gen)
    s = _state(tmp_path, ApiKeys(gemini="g"))

    async def _run() -> None:
        captured["release"] = asyncio.Event()
        s.enter_builder()
        task = asyncio.create_task(s.start_generation("prompt", "p"))
        while "on_chunk" not in captured:
            await asyncio.sleep(0)
        await s.leave_builder()
        captured["on_chunk"]("late")
        await task

    asyncio.run(_run())

    assert s.screen is Screen.HOME
    assert s.code == "<html>"
    assert s.is_loading is False
    assert s.error is None
    assert any(e.text == "Generation cancelled." for e in s.logs)


def test_new_generation_supersedes_previous(tmp_path, monkeypatch) -> None:
    started: list[str] = []
    hold = {}

    async def _gen(api_key, prompt, on_chunk):
        started.append(prompt)
        if prompt == "first":
            on_chunk("first")
            await hold["never"].wait()
        on_chunk("second")

    monkeypatch.setattr(state_mod.gemini_stream, "generate_from_prompt", _gen)
    s = _state(tmp_path, ApiKeys(gemini="g"))

    async def _run() -> None:
        hold["never"] = asyncio.Event()
        first = asyncio.create_task(s.start_generation("prompt", "first"))
        while not started:
            await asyncio.sleep(0)
        await s.start_generation("prompt", "second")
        await first

    asyncio.run(_run())

    assert started == ["first", "second"]
    assert s.code == "second"
    assert s.chat_history[-1].content == "Code generation complete."
    assert s.is_loading is False


def test_generated_code_reaches_the_preview(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(
        state_mod.gemini_stream, "generate_from_prompt", _streaming(["<html>", "</html>"])
    )
    provider = _FakeSandboxProvider()
    s = _state(tmp_path, ApiKeys(gemini="g", e2b="e"), sandbox_provider=provider)

    async def _run() -> None:
        await s.start_generation("prompt", "p")
        await s.sandbox.wait_idle()
        assert s.sandbox.status is SandboxStatus.RUNNING
        await s.leave_builder()

    asyncio.run(_run())

    assert len(provider.sessions) == 1
    assert provider.sessions[0].writes[-1] == "<html></html>"
    assert provider.sessions[0].killed
    assert s.sandbox.status is SandboxStatus.IDLE


def test_editor_edits_publish_once_after_quiet_period(tmp_path) -> None:
    s = _state(tmp_path)
    published: list[str] = []
    s.subscribe(lambda: published.append(s.code))

    async def _run() -> None:
        for text in ("<", "<h", "<h1>"):
            s.edit_code(text)
        assert s.draft == "<h1>"
        assert s.code == ""
        await asyncio.sleep(0.05)

    asyncio.run(_run())
    assert s.code == "<h1>"
    assert [c for c in published if c] == ["<h1>"]


class _GatedRegistry:
    def __init__(self) -> None:
        self.gates: list[tuple[asyncio.Event, bool]] = []

    async def validate(self, provider, key: str) -> bool:
        gate = asyncio.Event()
        result = key == "good"
        self.gates.append((gate, result))
        await gate.wait()
        return result


def test_validation_status_reflects_newest_probe(tmp_path) -> None:
    registry = _GatedRegistry()
    s = _state(tmp_path, validators=registry)

    async def _run() -> None:
        old = asyncio.create_task(s.validate_api_key("openai", "bad"))
        new = asyncio.create_task(s.validate_api_key("openai", "good"))
        while len(registry.gates) < 2:
            await asyncio.sleep(0)
        assert s.validation[Provider.OPENAI] is ValidationStatus.VALIDATING
        registry.gates[1][0].set()
        assert await new is True
        registry.gates[0][0].set()
        assert await old is False

    asyncio.run(_run())
    assert s.validation[Provider.OPENAI] is ValidationStatus.VALID


def test_save_api_keys_persists_and_snapshot_hides_secrets(tmp_path) -> None:
    s = _state(tmp_path)
    assert s.save_api_keys(ApiKeys(gemini="secret-g", e2b="secret-e")) is True

    reloaded = CredentialStore(tmp_path / "keys.json").load()
    assert reloaded.gemini == "secret-g"

    snap = s.snapshot()
    assert snap["configured_keys"]["gemini"] is True
    assert snap["configured_keys"]["openai"] is False
    assert "secret-g" not in repr(snap)
    assert snap["logs"][-1].endswith("API Keys updated.")


def test_url_run_superseded_during_scrape_stops_before_generating(
    tmp_path, monkeypatch
) -> None:
    calls: list[tuple] = []
    s = _state(tmp_path, ApiKeys(gemini="g", firecrawl="fc"))

    async def _scrape(api_key, url):
        # A newer generation takes over while the scrape result is in hand.
        s._epoch += 1
        return "# Example Domain"

    monkeypatch.setattr(state_mod.firecrawl, "scrape_url", _scrape)
    monkeypatch.setattr(
        state_mod.gemini_stream, "generate_from_url", _streaming(["<p>hi</p>"], calls)
    )

    asyncio.run(s.start_generation(GenerationMode.URL, "https://example.com"))

    assert calls == []
    assert s.code == ""
    assert "Scraping complete. Generating code..." not in [e.text for e in s.logs]
    assert [m.role for m in s.chat_history] == ["system"]
