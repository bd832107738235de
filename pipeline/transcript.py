"""
transcript.py — HindSight · Turn & Session Transcript
=====================================================
Framework-agnostic domain models for one monitoring session.

  • Classification outcomes  — Pending | Clean | Flagged | Failed
  • Turn                     — one finalized utterance + its verdict
  • SessionTranscript        — append-only ordered log of turns

The turn pipeline is the only writer.  Everything else (status API,
persistence writer) reads point-in-time copies via `snapshot()`.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Union


# ---------------------------------------------------------------------------
# Classification outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Pending:
    """Classification requested, no verdict yet."""
    state: Literal["pending"] = field(default="pending", init=False)


@dataclass(frozen=True)
class Clean:
    """Classifier answered: no fallacy."""
    state: Literal["clean"] = field(default="clean", init=False)


@dataclass(frozen=True)
class Flagged:
    """Classifier answered: fallacy detected."""
    name: str
    reasoning: str
    state: Literal["flagged"] = field(default="flagged", init=False)


@dataclass(frozen=True)
class Failed:
    """Classifier did not produce a usable verdict.  Never means 'clean'."""
    reason: str
    state: Literal["failed"] = field(default="failed", init=False)


ClassificationOutcome = Union[Clean, Flagged, Failed]
Classification = Union[Pending, Clean, Flagged, Failed]

PENDING = Pending()


class TurnAlreadyResolved(RuntimeError):
    """Raised when a terminal classification is applied to a turn twice."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Turn
# ---------------------------------------------------------------------------

@dataclass
class Turn:
    """One finalized utterance within a session."""
    sequence:       int
    text:           str
    timestamp:      datetime       = field(default_factory=_utcnow)
    classification: Classification = PENDING

    @property
    def is_resolved(self) -> bool:
        return not isinstance(self.classification, Pending)

    def resolve(self, outcome: ClassificationOutcome) -> None:
        """Move from Pending to a terminal state.  Allowed exactly once."""
        if self.is_resolved:
            raise TurnAlreadyResolved(
                f"turn {self.sequence} already {self.classification.state}"
            )
        self.classification = outcome

    def copy(self) -> "Turn":
        # Classification values are frozen, so a shallow copy is a full copy.
        return dataclasses.replace(self)


# ---------------------------------------------------------------------------
# Session transcript
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TranscriptStats:
    total_turns:    int
    fallacy_count:  int


class SessionTranscript:
    """Ordered, gapless log of turns for a single session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._turns: list[Turn] = []
        self._next_sequence = 1

    def __len__(self) -> int:
        return len(self._turns)

    def append(self, text: str, timestamp: Optional[datetime] = None) -> Turn:
        """Create the next turn (Pending) and append it."""
        turn = Turn(
            sequence=self._next_sequence,
            text=text,
            timestamp=timestamp or _utcnow(),
        )
        self._next_sequence += 1
        self._turns.append(turn)
        return turn

    def snapshot(self) -> list[Turn]:
        """Point-in-time copies of every turn, in sequence order."""
        return [t.copy() for t in self._turns]

    def stats(self) -> TranscriptStats:
        return TranscriptStats(
            total_turns=len(self._turns),
            fallacy_count=sum(
                1 for t in self._turns if isinstance(t.classification, Flagged)
            ),
        )
