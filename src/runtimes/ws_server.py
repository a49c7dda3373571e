from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.builder.config import (
    cors_allow_origins,
    server_host,
    server_port,
    server_reload,
)
from src.builder.state import BuilderState
from src.builder.types import GenerationMode
from src.credentials.providers import PROVIDER_CATALOGUE, ApiKeys, parse_provider
from src.credentials.store import CredentialStore
from src.scrape.firecrawl import is_valid_url

# Load local env after imports to keep linting (E402) happy.
load_dotenv()

logger = logging.getLogger(__name__)


class GenerateRequest(BaseModel):
    mode: str = GenerationMode.PROMPT.value
    input: str


class RefineRequest(BaseModel):
    message: str


class CodeRequest(BaseModel):
    code: str
    debounce: bool = True


class ValidateRequest(BaseModel):
    key: str


def _default_state() -> BuilderState:
    return BuilderState(CredentialStore())


def _builder(request: Request) -> BuilderState:
    return request.app.state.builder


def create_app(state_factory: Callable[[], BuilderState] = _default_state) -> FastAPI:
    """Local presentation adapter: REST actions plus a WebSocket state feed.

    One `BuilderState` per process, created on startup and closed (sandbox torn
    down) on shutdown.
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.builder = state_factory()
        try:
            yield
        finally:
            await app.state.builder.close()

    app = FastAPI(title="pagecraft", lifespan=lifespan)

    origins = cors_allow_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/state")
    async def api_state(request: Request) -> dict[str, Any]:
        return _builder(request).snapshot()

    @app.get("/api/providers")
    async def api_providers() -> dict[str, Any]:
        return {
            "providers": [
                {"id": p.provider.value, "label": p.label, "placeholder": p.placeholder}
                for p in PROVIDER_CATALOGUE
            ]
        }

    @app.put("/api/keys")
    async def api_save_keys(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "invalid_json"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "invalid_body"}, status_code=400)
        state = _builder(request)
        ok = state.save_api_keys(ApiKeys.from_dict(body))
        if not ok:
            return JSONResponse({"error": state.error or "save_failed"}, status_code=500)
        return JSONResponse(state.snapshot(), status_code=200)

    @app.post("/api/keys/{provider}/validate")
    async def api_validate_key(
        provider: str, body: ValidateRequest, request: Request
    ) -> JSONResponse:
        try:
            p = parse_provider(provider)
        except ValueError:
            return JSONResponse({"error": "unknown_provider"}, status_code=404)
        if not body.key.strip():
            return JSONResponse({"error": "missing_key"}, status_code=400)
        valid = await _builder(request).validate_api_key(p, body.key)
        return JSONResponse({"provider": p.value, "valid": valid}, status_code=200)

    @app.post("/api/generate")
    async def api_generate(body: GenerateRequest, request: Request) -> JSONResponse:
        try:
            mode = GenerationMode(body.mode.strip().lower())
        except ValueError:
            return JSONResponse({"error": "invalid_mode"}, status_code=400)
        text = body.input.strip()
        if not text:
            return JSONResponse({"error": "missing_input"}, status_code=400)
        if mode is GenerationMode.URL and not is_valid_url(text):
            return JSONResponse({"error": "invalid_url"}, status_code=400)

        state = _builder(request)
        if state.is_loading:
            return JSONResponse({"error": "busy"}, status_code=409)
        state.enter_builder()
        await state.start_generation(mode, text)
        return JSONResponse(state.snapshot(), status_code=200)

    @app.post("/api/refine")
    async def api_refine(body: RefineRequest, request: Request) -> JSONResponse:
        message = body.message.strip()
        if not message:
            return JSONResponse({"error": "missing_message"}, status_code=400)
        state = _builder(request)
        if state.is_loading:
            return JSONResponse({"error": "busy"}, status_code=409)
        await state.refine_code(message)
        return JSONResponse(state.snapshot(), status_code=200)

    @app.put("/api/code")
    async def api_code(body: CodeRequest, request: Request) -> dict[str, Any]:
        state = _builder(request)
        if body.debounce:
            state.edit_code(body.code)
        else:
            state.set_code(body.code)
        return state.snapshot()

    @app.post("/api/sandbox/start")
    async def api_sandbox_start(request: Request) -> dict[str, Any]:
        state = _builder(request)
        await state.start_sandbox()
        return state.snapshot()

    @app.post("/api/sandbox/stop")
    async def api_sandbox_stop(request: Request) -> dict[str, Any]:
        state = _builder(request)
        await state.stop_sandbox()
        return state.snapshot()

    @app.post("/api/leave")
    async def api_leave(request: Request) -> dict[str, Any]:
        state = _builder(request)
        await state.leave_builder()
        return state.snapshot()

    @app.websocket("/ws")
    async def ws_state(ws: WebSocket) -> None:
        await _handle_ws(ws, ws.app.state.builder)

    return app


async def _handle_ws(ws: WebSocket, state: BuilderState) -> None:
    await ws.accept()
    logger.info("State feed connected: %s", ws.client)

    # Coalesce bursts (streamed chunks) into one pending push.
    dirty: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

    def _mark_dirty() -> None:
        with contextlib.suppress(asyncio.QueueFull):
            dirty.put_nowait(None)

    async def _push() -> None:
        while True:
            await dirty.get()
            await ws.send_json({"type": "state", "data": state.snapshot()})

    unsubscribe = state.subscribe(_mark_dirty)
    sender = asyncio.create_task(_push())
    _mark_dirty()
    try:
        while True:
            # Push-only feed; inbound frames just keep the socket alive.
            await ws.receive_text()
    except WebSocketDisconnect:
        logger.info("State feed disconnected: %s", ws.client)
    finally:
        unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await sender


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "src.runtimes.ws_server:app",
        host=server_host(),
        port=server_port(),
        reload=server_reload(),
    )


if __name__ == "__main__":
    main()
