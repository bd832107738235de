"""
Pytest fixtures and fakes for the HindSight test suite.

No network: the remote classifier and the wearable device are replaced by
scripted fakes.  Transcripts are written under pytest's tmp_path.
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add project root to path so tests can import the root modules and the pipeline package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from pipeline.persistence import TranscriptWriter  # noqa: E402
from pipeline.transcript import Clean  # noqa: E402
from pipeline.turn_pipeline import TurnPipeline  # noqa: E402


class ScriptedClassifier:
    """Returns a preset outcome per utterance; can hold a reply until released."""

    def __init__(self, outcomes=None, default=None):
        self.outcomes = dict(outcomes or {})
        self.default = default if default is not None else Clean()
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def hold(self, utterance: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[utterance] = gate
        return gate

    async def classify(self, utterance):
        self.calls.append(utterance)
        gate = self.gates.get(utterance)
        if gate is not None:
            await gate.wait()
        result = self.outcomes.get(utterance, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingDevice:
    """Records actuator commands; can be told to fail speech or light."""

    def __init__(self, has_light=True, fail_speak=False, fail_light=False):
        self.has_light = has_light
        self.fail_speak = fail_speak
        self.fail_light = fail_light
        self.calls: list[tuple] = []

    async def speak(self, text):
        self.calls.append(("speak", text))
        if self.fail_speak:
            raise ConnectionError("speaker unreachable")

    async def set_indicator(self, color, on_ms, off_ms=None, count=None):
        self.calls.append(("indicator", color, on_ms, off_ms, count))
        if self.fail_light:
            raise ConnectionError("light unreachable")

    @property
    def spoken(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "speak"]

    @property
    def indicators(self) -> list[tuple]:
        return [c[1:] for c in self.calls if c[0] == "indicator"]


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until `predicate()` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def classifier() -> ScriptedClassifier:
    return ScriptedClassifier()


@pytest.fixture
def device() -> RecordingDevice:
    return RecordingDevice()


@pytest.fixture
def transcripts_dir(tmp_path) -> Path:
    return tmp_path / "transcripts"


@pytest.fixture
def writer(transcripts_dir) -> TranscriptWriter:
    return TranscriptWriter(transcripts_dir)


@pytest.fixture
def turn_pipeline(classifier, writer) -> TurnPipeline:
    return TurnPipeline(classifier, writer)


def saved_files(directory: Path, pattern: Optional[str] = "*.txt") -> list[Path]:
    if not directory.exists():
        return []
    return sorted(directory.glob(pattern))
