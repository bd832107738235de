"""
turn_pipeline.py — HindSight · Session Turn Pipeline
====================================================
Per-utterance state machine for one live monitoring session.

Event contract
──────────────
  • TranscriptionEvent(is_final=False) → replace the in-progress display text
  • TranscriptionEvent(is_final=True)  → create Turn (Pending), append, then
                                         dispatch one classification task
  • ControlSignal.SHORT_PRESS          → report {total_turns, fallacy_count}
  • ControlSignal.LONG_PRESS           → persist a snapshot now

Concurrency
───────────
Events are handled one at a time, in arrival order, on the event loop.
Every finalized turn spawns its own asyncio.Task; many may be in flight and
they may complete in any order.  Each task carries the SessionContext and
Turn it was created for, so a result always lands on its own turn.

A new session replaces the context wholesale.  In-flight tasks from the old
session are not cancelled; when they complete they see their context is no
longer current and drop the result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Coroutine, Optional, Union

from .actuators import ActuatorCoordinator
from .interfaces import Classifier
from .persistence import PersistenceError, TranscriptWriter
from .transcript import (
    Clean,
    Failed,
    Flagged,
    SessionTranscript,
    TranscriptStats,
    Turn,
    TurnAlreadyResolved,
)

log = logging.getLogger("hindsight.pipeline")


class Phase(Enum):
    IDLE         = "idle"           # nothing heard since the last finalized turn
    ACCUMULATING = "accumulating"   # partial transcript on display


class ControlSignal(Enum):
    SHORT_PRESS = "short"
    LONG_PRESS  = "long"


class NoActiveSession(LookupError):
    """A session-scoped operation was requested before any session started."""


@dataclass(frozen=True)
class TranscriptionEvent:
    text:     str
    is_final: bool


@dataclass(eq=False)
class SessionContext:
    """Everything owned by one session.  Replaced, never reused."""
    session_id:  str
    generation:  int
    transcript:  SessionTranscript
    actuators:   Optional[ActuatorCoordinator] = None
    phase:       Phase = Phase.IDLE
    in_progress: str = ""
    closed:      bool = False
    started_at:  datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PipelineStatus:
    session_id:  str
    generation:  int
    phase:       Phase
    in_progress: str
    closed:      bool
    stats:       TranscriptStats
    turns:       list[Turn]


class TurnPipeline:
    """Sole writer of the active session's transcript."""

    def __init__(self, classifier: Classifier, writer: TranscriptWriter) -> None:
        self._classifier = classifier
        self._writer = writer
        self._context: Optional[SessionContext] = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Session lifecycle
    # -----------------------------------------------------------------------

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    def is_current(self, context: SessionContext) -> bool:
        return context is self._context

    async def start_session(
        self,
        session_id: str,
        actuators: Optional[ActuatorCoordinator] = None,
        *,
        announce: bool = True,
    ) -> SessionContext:
        """Replace the active context with a fresh, empty one.

        A previous session that was never closed is closed here and its
        transcript (if non-empty) is written out before it is dropped.
        """
        previous = self._context
        self._generation += 1
        context = SessionContext(
            session_id=session_id,
            generation=self._generation,
            transcript=SessionTranscript(session_id),
            actuators=actuators,
        )
        self._context = context
        log.info(
            "event=session_started session=%s generation=%d",
            session_id, context.generation,
        )

        if previous is not None and not previous.closed:
            previous.closed = True
            log.info(
                "event=session_superseded session=%s generation=%d turns=%d",
                previous.session_id, previous.generation, len(previous.transcript),
            )
            if len(previous.transcript):
                try:
                    await self._persist(previous)
                except PersistenceError as exc:
                    log.error(
                        "event=superseded_save_failed session=%s error=%s",
                        previous.session_id, exc,
                    )

        if announce and actuators is not None:
            self._spawn(actuators.on_ready(), name=f"ready_{context.generation}")
        return context

    async def end_session(self, context: Optional[SessionContext] = None) -> Optional[Path]:
        """Close the session and persist its transcript if it has any turns.

        The context stays addressable, so classifications still in flight
        keep resolving onto it.  Raises PersistenceError if the write fails.
        """
        ctx = context or self._context
        if ctx is None or ctx.closed:
            return None
        ctx.closed = True
        ctx.phase = Phase.IDLE
        ctx.in_progress = ""
        log.info(
            "event=session_ended session=%s generation=%d turns=%d",
            ctx.session_id, ctx.generation, len(ctx.transcript),
        )
        if not len(ctx.transcript):
            return None
        return await self._persist(ctx)

    # -----------------------------------------------------------------------
    # Inbound events
    # -----------------------------------------------------------------------

    async def handle_transcription(
        self,
        event: TranscriptionEvent,
        context: Optional[SessionContext] = None,
    ) -> Optional[Turn]:
        """Apply one transcription event.  Returns the new Turn, if one was created."""
        ctx = self._accepting(context)
        if ctx is None:
            return None

        text = (event.text or "").strip()

        if not event.is_final:
            ctx.in_progress = text
            ctx.phase = Phase.ACCUMULATING if text else Phase.IDLE
            log.debug("event=transcript_partial text=%.80s", text)
            return None

        ctx.in_progress = ""
        ctx.phase = Phase.IDLE
        if not text:
            log.debug("event=transcript_final_empty discarded=True")
            return None

        # Append before dispatch: readers see the Pending turn immediately.
        turn = ctx.transcript.append(text)
        log.info("event=turn_created seq=%d text=%.80s", turn.sequence, text)
        self._spawn(
            self._classify_turn(ctx, turn),
            name=f"classify_{ctx.generation}_{turn.sequence}",
        )
        return turn

    async def handle_control(
        self,
        signal: ControlSignal,
        context: Optional[SessionContext] = None,
    ) -> Union[TranscriptStats, Path]:
        if signal is ControlSignal.SHORT_PRESS:
            return self.report_counts(context)
        return await self.save_snapshot(context)

    def report_counts(self, context: Optional[SessionContext] = None) -> TranscriptStats:
        ctx = context or self._context
        if ctx is None:
            return TranscriptStats(total_turns=0, fallacy_count=0)
        stats = ctx.transcript.stats()
        log.info(
            "event=counts_reported session=%s total_turns=%d fallacy_count=%d",
            ctx.session_id, stats.total_turns, stats.fallacy_count,
        )
        if ctx.actuators is not None and not ctx.closed:
            self._spawn(ctx.actuators.announce_counts(stats), name=f"counts_{ctx.generation}")
        return stats

    async def save_snapshot(self, context: Optional[SessionContext] = None) -> Path:
        """Persist the current transcript immediately.  Raises PersistenceError."""
        ctx = context or self._context
        if ctx is None:
            raise NoActiveSession("no session has been started")
        path = await self._persist(ctx)
        if ctx.actuators is not None and not ctx.closed:
            self._spawn(ctx.actuators.announce_saved(), name=f"saved_{ctx.generation}")
        return path

    # -----------------------------------------------------------------------
    # Status reader
    # -----------------------------------------------------------------------

    def snapshot(self) -> list[Turn]:
        ctx = self._context
        return ctx.transcript.snapshot() if ctx is not None else []

    def status(self) -> Optional[PipelineStatus]:
        ctx = self._context
        if ctx is None:
            return None
        return PipelineStatus(
            session_id=ctx.session_id,
            generation=ctx.generation,
            phase=ctx.phase,
            in_progress=ctx.in_progress,
            closed=ctx.closed,
            stats=ctx.transcript.stats(),
            turns=ctx.transcript.snapshot(),
        )

    async def drain(self) -> None:
        """Wait for every outstanding classification / actuator task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # -----------------------------------------------------------------------
    # Classification
    # -----------------------------------------------------------------------

    async def _classify_turn(self, ctx: SessionContext, turn: Turn) -> None:
        try:
            outcome = await self._classifier.classify(turn.text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("event=classifier_raised seq=%d error=%s", turn.sequence, exc, exc_info=True)
            outcome = Failed(f"classifier raised: {exc}")

        if not self.is_current(ctx):
            log.info(
                "event=stale_result_discarded session=%s generation=%d seq=%d state=%s",
                ctx.session_id, ctx.generation, turn.sequence, outcome.state,
            )
            return

        try:
            turn.resolve(outcome)
        except TurnAlreadyResolved as exc:
            log.warning("event=duplicate_result seq=%d error=%s", turn.sequence, exc)
            return

        log.info(
            "event=turn_resolved seq=%d state=%s session_closed=%s",
            turn.sequence, outcome.state, ctx.closed,
        )
        if isinstance(outcome, Flagged):
            log.info("event=fallacy_detected seq=%d name=%s reasoning=%.120s",
                     turn.sequence, outcome.name, outcome.reasoning)

        if ctx.closed or ctx.actuators is None:
            return
        if isinstance(outcome, Flagged):
            await ctx.actuators.on_flagged(outcome.name)
        elif isinstance(outcome, Clean):
            await ctx.actuators.on_clean()

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _accepting(self, context: Optional[SessionContext]) -> Optional[SessionContext]:
        ctx = context or self._context
        if ctx is None:
            log.debug("event=event_ignored reason=no_session")
            return None
        if not self.is_current(ctx):
            log.debug("event=event_ignored reason=stale_session session=%s", ctx.session_id)
            return None
        if ctx.closed:
            log.debug("event=event_ignored reason=session_closed session=%s", ctx.session_id)
            return None
        return ctx

    async def _persist(self, ctx: SessionContext) -> Path:
        turns = ctx.transcript.snapshot()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._writer.persist, turns, ctx.session_id)

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("event=task_failed task=%s error=%s", task.get_name(), exc)
