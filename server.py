"""
server.py — HindSight · FastAPI Control Plane
=============================================
Hosts the session turn pipeline behind a WebSocket and exposes the
pull-based status API the phone view polls.

Endpoints
---------
  WS   /ws/session/{session_id}   Live session: transcription + button events in,
                                  speak / indicator commands out
  GET  /ui/api/transcript         Snapshot of the current session's turns
  GET  /ui/api/status             Session id, phase, in-progress text, counts
  POST /ui/api/save               Persist the current transcript now
  GET  /health                    Service liveness
  GET  /config                    Current runtime config
  PUT  /config                    Merge-patch runtime config (persisted to disk)

Session model
-------------
One active session at a time.  A new WebSocket connection starts a new
session and supersedes the previous one; a disconnect ends the session and
writes its transcript.  Classification results that arrive for a superseded
session are dropped by the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from config import HindsightConfig, config_path
from pipeline.actuators import ActuatorCoordinator
from pipeline.classifier import GroqFallacyClassifier
from pipeline.interfaces import Classifier
from pipeline.messages import TranscriptionMessage, parse_message
from pipeline.persistence import PersistenceError, TranscriptWriter
from pipeline.transcript import Failed, Flagged, Turn
from pipeline.turn_pipeline import (
    ControlSignal,
    NoActiveSession,
    SessionContext,
    TurnPipeline,
)

load_dotenv()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if os.getenv("HINDSIGHT_DEBUG") else logging.INFO,
    format="%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s – %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("hindsight.server")

GRACEFUL_STOP_SEC = float(os.getenv("GRACEFUL_STOP_SEC", "5.0"))

# Sections that are baked into long-lived objects at startup.
_RESTART_SECTIONS = frozenset({"classifier", "persistence", "server"})


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class ClassificationInfo(BaseModel):
    state:     Literal["pending", "clean", "flagged", "failed"]
    name:      Optional[str] = None
    reasoning: Optional[str] = None
    reason:    Optional[str] = None


class TurnInfo(BaseModel):
    sequence:       int
    timestamp:      datetime
    text:           str
    classification: ClassificationInfo


class StatusInfo(BaseModel):
    session_id:    Optional[str] = None
    generation:    int = 0
    phase:         str = "idle"
    in_progress:   str = ""
    closed:        bool = True
    total_turns:   int = 0
    fallacy_count: int = 0


def turn_to_info(turn: Turn) -> TurnInfo:
    verdict = turn.classification
    extra: dict[str, str] = {}
    if isinstance(verdict, Flagged):
        extra = {"name": verdict.name, "reasoning": verdict.reasoning}
    elif isinstance(verdict, Failed):
        extra = {"reason": verdict.reason}
    return TurnInfo(
        sequence=turn.sequence,
        timestamp=turn.timestamp,
        text=turn.text,
        classification=ClassificationInfo(state=verdict.state, **extra),
    )


# ---------------------------------------------------------------------------
# WebSocket-backed device
# ---------------------------------------------------------------------------

class WebSocketDevice:
    """Forwards actuator commands to the connected session client as JSON."""

    def __init__(self, ws: WebSocket, has_light: bool = True) -> None:
        self._ws = ws
        self.has_light = has_light

    async def speak(self, text: str) -> None:
        await self._ws.send_json({"type": "speak", "text": text})

    async def set_indicator(
        self,
        color: str,
        on_ms: int,
        off_ms: Optional[int] = None,
        count: Optional[int] = None,
    ) -> None:
        await self._ws.send_json({
            "type":          "indicator",
            "color":         color,
            "onDurationMs":  on_ms,
            "offDurationMs": off_ms,
            "repeatCount":   count,
        })


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app(
    config: Optional[HindsightConfig] = None,
    classifier: Optional[Classifier] = None,
    config_file: Optional[Path] = None,
) -> FastAPI:
    cfg = config or HindsightConfig.load(config_file or config_path())
    writer = TranscriptWriter(cfg.persistence.directory, cfg.persistence.filename_prefix)
    pipeline = TurnPipeline(classifier or GroqFallacyClassifier(cfg.classifier), writer)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        log.info("event=server_start transcripts_dir=%s", writer.directory)
        yield
        log.info("event=server_shutdown in_flight=%d", pipeline.in_flight)
        try:
            await asyncio.wait_for(pipeline.drain(), timeout=GRACEFUL_STOP_SEC)
        except asyncio.TimeoutError:
            log.warning("event=drain_timeout in_flight=%d", pipeline.in_flight)
        try:
            await pipeline.end_session()
        except PersistenceError as exc:
            log.error("event=shutdown_save_failed error=%s", exc)
        log.info("event=server_stopped")

    app = FastAPI(
        title="HindSight",
        version="1.0.0",
        description="Real-time logical fallacy monitor",
        lifespan=_lifespan,
    )
    app.state.config = cfg
    app.state.config_file = config_file or config_path()
    app.state.pipeline = pipeline

    # Allow the phone view to poll from any local origin (dev only)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Liveness probe."""
        pipeline: TurnPipeline = request.app.state.pipeline
        ctx = pipeline.context
        return JSONResponse({
            "status":         "ok",
            "session":        ctx.session_id if ctx is not None else None,
            "session_active": ctx is not None and not ctx.closed,
            "in_flight":      pipeline.in_flight,
        })

    @app.get("/ui/api/transcript", response_model=list[TurnInfo])
    async def transcript(request: Request) -> list[TurnInfo]:
        """Point-in-time snapshot of the current session's turns."""
        pipeline: TurnPipeline = request.app.state.pipeline
        return [turn_to_info(t) for t in pipeline.snapshot()]

    @app.get("/ui/api/status", response_model=StatusInfo)
    async def session_status(request: Request) -> StatusInfo:
        pipeline: TurnPipeline = request.app.state.pipeline
        current = pipeline.status()
        if current is None:
            return StatusInfo()
        return StatusInfo(
            session_id=current.session_id,
            generation=current.generation,
            phase=current.phase.value,
            in_progress=current.in_progress,
            closed=current.closed,
            total_turns=current.stats.total_turns,
            fallacy_count=current.stats.fallacy_count,
        )

    @app.post("/ui/api/save", status_code=status.HTTP_201_CREATED)
    async def save(request: Request) -> JSONResponse:
        """Manual save, same as a long press on the device."""
        pipeline: TurnPipeline = request.app.state.pipeline
        try:
            path = await pipeline.save_snapshot()
        except NoActiveSession as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content={"status": "saved", "path": str(path)},
        )

    @app.get("/config")
    async def get_config(request: Request) -> JSONResponse:
        return JSONResponse(request.app.state.config.model_dump())

    @app.put("/config")
    async def put_config(request: Request) -> JSONResponse:
        """Merge-patch the runtime config and persist it.

        Indicator and speech changes apply from the next session on;
        classifier, persistence and server changes need a restart.
        """
        try:
            patch = await request.json()
        except Exception as exc:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {exc}") from exc
        if not isinstance(patch, dict):
            raise HTTPException(status_code=400, detail="Config patch must be a JSON object.")
        try:
            updated = request.app.state.config.merge_patch(patch)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc

        try:
            updated.save(request.app.state.config_file)
        except OSError as exc:
            log.error("event=config_save_failed error=%s", exc)
            raise HTTPException(status_code=500, detail="Failed to persist config.") from exc
        request.app.state.config = updated
        return JSONResponse({
            "status":           "saved",
            "restart_required": bool(_RESTART_SECTIONS & patch.keys()),
            "config":           updated.model_dump(),
        })

    @app.websocket("/ws/session/{session_id}")
    async def ws_session(ws: WebSocket, session_id: str, has_light: bool = True) -> None:
        """
        Live session stream.  Client → server, one JSON object per message:
            {"type": "transcription", "text": "...", "isFinal": true}
            {"type": "button", "press": "short" | "long"}
        Server → client:
            {"type": "speak", "text": "..."}
            {"type": "indicator", "color": "red", "onDurationMs": 150,
             "offDurationMs": 100, "repeatCount": 1}
            {"type": "counts", "totalTurns": 3, "fallacyCount": 1}
            {"type": "saved", "path": "..."} | {"type": "save_failed", "error": "..."}
        Malformed messages are ignored.
        """
        await ws.accept()
        pipeline: TurnPipeline = ws.app.state.pipeline
        cfg: HindsightConfig = ws.app.state.config

        actuators = ActuatorCoordinator(
            WebSocketDevice(ws, has_light=has_light),
            indicator=cfg.indicator,
            speech=cfg.speech,
        )
        ctx = await pipeline.start_session(session_id, actuators)
        log.info("event=ws_session_connected session=%s remote=%s", session_id, ws.client)

        try:
            while True:
                frame = await ws.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                # Text or binary frames both carry JSON; anything unparseable is dropped.
                message = parse_message(frame.get("text") or frame.get("bytes") or "")
                if message is None:
                    continue
                if isinstance(message, TranscriptionMessage):
                    await pipeline.handle_transcription(message.to_event(), ctx)
                else:
                    await _handle_button(ws, pipeline, ctx, message.to_signal())
        except WebSocketDisconnect:
            log.info("event=ws_session_disconnected session=%s", session_id)
        finally:
            try:
                path = await pipeline.end_session(ctx)
                if path is not None:
                    log.info("event=session_autosaved session=%s path=%s", session_id, path)
            except PersistenceError as exc:
                log.error("event=session_autosave_failed session=%s error=%s", session_id, exc)


async def _handle_button(
    ws: WebSocket,
    pipeline: TurnPipeline,
    ctx: SessionContext,
    signal: ControlSignal,
) -> None:
    if not pipeline.is_current(ctx):
        log.debug("event=button_ignored reason=stale_session session=%s", ctx.session_id)
        return

    if signal is ControlSignal.SHORT_PRESS:
        stats = pipeline.report_counts(ctx)
        await ws.send_json({
            "type":          "counts",
            "totalTurns":    stats.total_turns,
            "fallacyCount":  stats.fallacy_count,
        })
        return

    try:
        path = await pipeline.save_snapshot(ctx)
    except PersistenceError as exc:
        await ws.send_json({"type": "save_failed", "error": str(exc)})
        return
    await ws.send_json({"type": "saved", "path": str(path)})


app = create_app()


def main() -> None:
    import uvicorn

    cfg: HindsightConfig = app.state.config
    log.info("event=starting host=%s port=%d", cfg.server.host, cfg.server.port)
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port)


if __name__ == "__main__":
    main()
