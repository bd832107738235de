"""
replay.py — HindSight · Offline Session Replay
==============================================
Feeds a recorded event stream through the turn pipeline without a device.
Actuator commands are logged instead of sent; the transcript is written
exactly as a live session would write it.

Usage
-----
    python replay.py <events.jsonl> [session_id]

Each line of the file is one inbound session message:
    {"type": "transcription", "text": "...", "isFinal": true}
    {"type": "button", "press": "short"}
Blank and malformed lines are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from config import HindsightConfig, config_path
from pipeline.actuators import ActuatorCoordinator, LoggingDevice
from pipeline.classifier import GroqFallacyClassifier
from pipeline.interfaces import Classifier
from pipeline.messages import ButtonMessage, TranscriptionMessage, parse_message
from pipeline.persistence import PersistenceError, TranscriptWriter
from pipeline.turn_pipeline import TurnPipeline

log = logging.getLogger("hindsight.replay")


def load_messages(path: str | Path) -> list[Union[TranscriptionMessage, ButtonMessage]]:
    messages = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            message = parse_message(line)
            if message is None:
                log.warning("event=replay_line_skipped line=%d", lineno)
                continue
            messages.append(message)
    return messages


async def replay(
    messages: list[Union[TranscriptionMessage, ButtonMessage]],
    session_id: str,
    config: HindsightConfig,
    classifier: Optional[Classifier] = None,
) -> Optional[Path]:
    """Run one session over `messages`; returns the transcript path (None if empty)."""
    writer = TranscriptWriter(config.persistence.directory, config.persistence.filename_prefix)
    pipeline = TurnPipeline(classifier or GroqFallacyClassifier(config.classifier), writer)
    actuators = ActuatorCoordinator(LoggingDevice(), config.indicator, config.speech)

    ctx = await pipeline.start_session(session_id, actuators)
    for message in messages:
        if isinstance(message, TranscriptionMessage):
            await pipeline.handle_transcription(message.to_event(), ctx)
            continue
        try:
            result = await pipeline.handle_control(message.to_signal(), ctx)
            log.info("event=replay_control press=%s result=%s", message.press, result)
        except PersistenceError as exc:
            log.error("event=replay_save_failed error=%s", exc)

    # Let every outstanding classification land before the session closes.
    await pipeline.drain()
    stats = ctx.transcript.stats()
    log.info(
        "event=replay_done session=%s total_turns=%d fallacy_count=%d",
        session_id, stats.total_turns, stats.fallacy_count,
    )
    return await pipeline.end_session(ctx)


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if os.getenv("HINDSIGHT_DEBUG") else logging.INFO,
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    if len(sys.argv) < 2:
        print("Usage: python replay.py <events.jsonl> [session_id]", file=sys.stderr)
        sys.exit(1)

    events_file = sys.argv[1]
    session = sys.argv[2] if len(sys.argv) > 2 else Path(events_file).stem

    try:
        saved = asyncio.run(replay(load_messages(events_file), session, HindsightConfig.load(config_path())))
    except PersistenceError as exc:
        print(f"Transcript not saved: {exc}", file=sys.stderr)
        sys.exit(2)
    print(saved if saved is not None else "No turns; nothing saved.")
