"""
config.py — HindSight · Runtime Configuration
=============================================
Pydantic models for every tunable parameter across the monitor.
Serialises to / deserialises from JSON.  Used by:
  • server.py  — GET/PUT /config endpoints, builds the pipeline at startup
  • replay.py  — offline replay of recorded transcription events
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

log = logging.getLogger("hindsight.config")

CONFIG_PATH_ENV = "HINDSIGHT_CONFIG"
DEFAULT_CONFIG_PATH = "hindsight_config.json"

# ---------------------------------------------------------------------------
# Default classifier prompt (kept here so config.py is the single source of truth)
# ---------------------------------------------------------------------------

DEFAULT_CLASSIFIER_PROMPT = """\
Analyze this statement for logical fallacies: "{utterance}"

Be liberal in your detection - if there's any hint of a logical fallacy, flag it.
Common fallacies to watch for: ad hominem, straw man, false dichotomy, slippery slope,
appeal to authority, appeal to emotion, hasty generalization, circular reasoning,
bandwagon, red herring, false cause, anecdotal evidence.

If there is any logical fallacy, respond in this exact JSON format:
{{
  "fallacy": true,
  "name": "<short fallacy name, max 4 words>",
  "reasoning": "<1-2 sentence explanation>"
}}

If there is truly no fallacy at all, respond:
{{
  "fallacy": false
}}

Respond with JSON only. No preamble."""


# ---------------------------------------------------------------------------
# Per-component config sections
# ---------------------------------------------------------------------------

class ClassifierConfig(BaseModel):
    """Remote fallacy classifier parameters (Groq chat completions)."""
    model: str = Field(default="llama-3.3-70b-versatile", description="Groq model ID")
    max_tokens: int = Field(default=300, ge=16, le=2048, description="Response size ceiling")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0, description="Randomness (0.0–2.0)")
    timeout_sec: float = Field(default=10.0, gt=0.0, le=120.0, description="Hard ceiling per request")
    prompt: str = Field(default=DEFAULT_CLASSIFIER_PROMPT, description="Template; must contain {utterance}")


class PulseConfig(BaseModel):
    """One indicator light effect."""
    color: str = "green"
    on_ms: int = Field(default=150, ge=1, le=10000)
    off_ms: Optional[int] = Field(default=100, ge=0, le=10000)
    count: Optional[int] = Field(default=1, ge=1, le=20)


class IndicatorConfig(BaseModel):
    """Indicator light effects per pipeline outcome."""
    ready: PulseConfig = Field(default_factory=lambda: PulseConfig(color="green", on_ms=1500, off_ms=None, count=None))
    alert: PulseConfig = Field(default_factory=lambda: PulseConfig(color="red"))
    clean: PulseConfig = Field(default_factory=lambda: PulseConfig(color="green"))


class SpeechConfig(BaseModel):
    """Spoken feedback through the wearable speaker."""
    ready_phrase: Optional[str] = Field(default="HindSight ready.", description="Spoken on session start; null disables")
    announce_counts: bool = Field(default=True, description="Speak turn/fallacy counts on short press")
    announce_saved: bool = Field(default=True, description="Speak a confirmation after a manual save")


class PersistenceConfig(BaseModel):
    """Transcript files."""
    directory: str = Field(default="./transcripts", description="Created if missing")
    filename_prefix: str = Field(default="hindsight", min_length=1)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

class HindsightConfig(BaseModel):
    """Complete runtime configuration for the monitor."""
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    indicator: IndicatorConfig = Field(default_factory=IndicatorConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # -- Persistence -----------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "HindsightConfig":
        """Load config from a JSON file.  Returns defaults if file doesn't exist."""
        p = Path(path)
        if not p.exists():
            log.info("event=config_load_defaults path=%s", p)
            return cls()
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            config = cls.model_validate(data)
            log.info("event=config_loaded path=%s", p)
            return config
        except Exception as exc:
            log.warning("event=config_load_error path=%s error=%s — using defaults", p, exc)
            return cls()

    def save(self, path: str | Path) -> None:
        """Persist config to a JSON file (pretty-printed)."""
        p = Path(path)
        p.write_text(
            self.model_dump_json(indent=2),
            encoding="utf-8",
        )
        log.info("event=config_saved path=%s", p)

    def merge_patch(self, patch: dict) -> "HindsightConfig":
        """Return a new config with `patch` merged over `self`.

        Supports nested partial updates, e.g.:
            {"classifier": {"timeout_sec": 5}}
        only changes classifier.timeout_sec, leaving everything else intact.
        """
        base = self.model_dump()
        _deep_merge(base, patch)
        return HindsightConfig.model_validate(base)


def _deep_merge(base: dict, patch: dict) -> None:
    """Recursively merge `patch` into `base` in-place."""
    for key, value in patch.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def config_path() -> Path:
    return Path(os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
