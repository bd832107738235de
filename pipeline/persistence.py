"""TranscriptWriter — renders a transcript snapshot to a plain-text file."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from .transcript import Flagged, Turn

log = logging.getLogger("hindsight.persistence")


class PersistenceError(RuntimeError):
    """Transcript could not be written.  The in-memory transcript is untouched."""


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a 'Z' suffix."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def render_transcript(turns: Sequence[Turn]) -> str:
    """One block per turn, blank line between blocks.

    Only Flagged turns get the extra FALLACY/REASONING lines; Pending and
    Failed turns render exactly like Clean ones.
    """
    if not turns:
        return ""
    blocks: list[str] = []
    for i, turn in enumerate(turns, start=1):
        block = f"[{i}] [{format_timestamp(turn.timestamp)}] {turn.text}"
        verdict = turn.classification
        if isinstance(verdict, Flagged):
            block += f"\n  [FALLACY: {verdict.name}]\n  [REASONING: {verdict.reasoning}]"
        blocks.append(block)
    return "\n\n".join(blocks) + "\n"


def safe_label(raw: str) -> str:
    """Keep only alphanum + dash + underscore, max 64 chars."""
    safe = "".join(c if c.isalnum() or c in "-_" else "-" for c in raw)
    return safe[:64].strip("-") or "session"


class TranscriptWriter:
    def __init__(self, directory: str | Path, prefix: str = "hindsight") -> None:
        self._directory = Path(directory)
        self._prefix = prefix

    @property
    def directory(self) -> Path:
        return self._directory

    def persist(self, turns: Sequence[Turn], session_label: str) -> Path:
        """Write `turns` to a new uniquely named file and return its path."""
        body = render_transcript(turns)
        label = safe_label(session_label)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            stamp = time.time_ns()
            while True:
                path = self._directory / f"{self._prefix}-{label}-{stamp}.txt"
                try:
                    with open(path, "x", encoding="utf-8") as f:
                        f.write(body)
                    break
                except FileExistsError:
                    stamp += 1
        except OSError as exc:
            log.error("event=transcript_save_failed session=%s error=%s", label, exc)
            raise PersistenceError(f"could not write transcript for {label}: {exc}") from exc

        log.info("event=transcript_saved session=%s turns=%d path=%s", label, len(turns), path)
        return path
