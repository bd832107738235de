"""
actuators.py — HindSight · Actuator Coordinator
===============================================
Best-effort speech + indicator light effects on the wearable.

Actuator output is a side channel: every effect is attempted on its own,
failures are logged and swallowed, and nothing here touches the transcript.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from config import IndicatorConfig, PulseConfig, SpeechConfig

from .interfaces import Device
from .transcript import TranscriptStats

log = logging.getLogger("hindsight.actuators")


class ActuatorCoordinator:
    """Sequences effects for one session's device."""

    def __init__(
        self,
        device: Device,
        indicator: Optional[IndicatorConfig] = None,
        speech: Optional[SpeechConfig] = None,
    ) -> None:
        self._device = device
        self._indicator = indicator or IndicatorConfig()
        self._speech = speech or SpeechConfig()

    # -- outcome effects -------------------------------------------------------

    async def on_flagged(self, name: str) -> None:
        """Speak the fallacy name, then one alert pulse.  Both are attempted."""
        await self._attempt("speak", self._device.speak, name)
        await self._pulse("alert", self._indicator.alert)

    async def on_clean(self) -> None:
        await self._pulse("clean", self._indicator.clean)

    # -- session / control effects ----------------------------------------------

    async def on_ready(self) -> None:
        if self._speech.ready_phrase:
            await self._attempt("speak", self._device.speak, self._speech.ready_phrase)
        await self._pulse("ready", self._indicator.ready)

    async def announce_counts(self, stats: TranscriptStats) -> None:
        if not self._speech.announce_counts:
            return
        turns = "turn" if stats.total_turns == 1 else "turns"
        fallacies = "fallacy" if stats.fallacy_count == 1 else "fallacies"
        await self._attempt(
            "speak",
            self._device.speak,
            f"{stats.total_turns} {turns}, {stats.fallacy_count} {fallacies}.",
        )

    async def announce_saved(self) -> None:
        if self._speech.announce_saved:
            await self._attempt("speak", self._device.speak, "Transcript saved.")

    # -- helpers ---------------------------------------------------------------

    async def _pulse(self, label: str, pulse: PulseConfig) -> None:
        if not getattr(self._device, "has_light", False):
            return
        await self._attempt(
            f"indicator_{label}",
            self._device.set_indicator,
            pulse.color, pulse.on_ms, pulse.off_ms, pulse.count,
        )

    @staticmethod
    async def _attempt(effect: str, fn: Callable[..., Awaitable[None]], *args: Any) -> bool:
        try:
            await fn(*args)
        except Exception as exc:
            log.warning("event=actuator_failed effect=%s error=%s", effect, exc)
            return False
        return True


class LoggingDevice:
    """Device stand-in that only logs what it would do (replay, headless runs)."""

    def __init__(self, has_light: bool = True) -> None:
        self.has_light = has_light

    async def speak(self, text: str) -> None:
        log.info("event=device_speak text=%r", text)

    async def set_indicator(
        self,
        color: str,
        on_ms: int,
        off_ms: Optional[int] = None,
        count: Optional[int] = None,
    ) -> None:
        log.info(
            "event=device_indicator color=%s on_ms=%d off_ms=%s count=%s",
            color, on_ms, off_ms, count,
        )
