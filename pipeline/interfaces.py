"""
Ports the turn pipeline depends on.  The pipeline talks to protocols,
not to Groq or to a socket, so tests can swap in fakes without network calls.

- Classifier.classify(utterance) -> ClassificationOutcome
- Device.speak(text) / Device.set_indicator(color, on_ms, off_ms, count)
"""

from __future__ import annotations

from typing import Optional, Protocol

from .transcript import ClassificationOutcome


class Classifier(Protocol):
    async def classify(self, utterance: str) -> ClassificationOutcome: ...


class Device(Protocol):
    has_light: bool

    async def speak(self, text: str) -> None: ...

    async def set_indicator(
        self,
        color: str,
        on_ms: int,
        off_ms: Optional[int] = None,
        count: Optional[int] = None,
    ) -> None: ...
