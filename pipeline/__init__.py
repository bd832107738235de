"""HindSight session turn pipeline: classifier, transcript, actuators, persistence."""

from .actuators import ActuatorCoordinator, LoggingDevice
from .classifier import GroqFallacyClassifier, parse_classification
from .persistence import PersistenceError, TranscriptWriter, render_transcript
from .transcript import (
    Clean,
    Failed,
    Flagged,
    Pending,
    SessionTranscript,
    TranscriptStats,
    Turn,
    TurnAlreadyResolved,
)
from .turn_pipeline import (
    ControlSignal,
    NoActiveSession,
    Phase,
    SessionContext,
    TranscriptionEvent,
    TurnPipeline,
)

__all__ = [
    "ActuatorCoordinator",
    "Clean",
    "ControlSignal",
    "Failed",
    "Flagged",
    "GroqFallacyClassifier",
    "LoggingDevice",
    "NoActiveSession",
    "Pending",
    "PersistenceError",
    "Phase",
    "SessionContext",
    "SessionTranscript",
    "TranscriptStats",
    "TranscriptWriter",
    "TranscriptionEvent",
    "Turn",
    "TurnAlreadyResolved",
    "TurnPipeline",
    "parse_classification",
    "render_transcript",
]
