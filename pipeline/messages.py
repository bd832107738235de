"""Inbound session messages (WebSocket frames and recorded replay lines)."""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .turn_pipeline import ControlSignal, TranscriptionEvent

log = logging.getLogger("hindsight.messages")


class TranscriptionMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type:     Literal["transcription"]
    text:     str = ""
    is_final: bool = Field(default=False, alias="isFinal")

    def to_event(self) -> TranscriptionEvent:
        return TranscriptionEvent(text=self.text, is_final=self.is_final)


class ButtonMessage(BaseModel):
    type:  Literal["button"]
    press: Literal["short", "long"]

    def to_signal(self) -> ControlSignal:
        return ControlSignal(self.press)


InboundMessage = Annotated[
    Union[TranscriptionMessage, ButtonMessage],
    Field(discriminator="type"),
]
_inbound: TypeAdapter = TypeAdapter(InboundMessage)


def parse_message(raw: str | bytes) -> Optional[Union[TranscriptionMessage, ButtonMessage]]:
    """Parse one JSON message.  Malformed input returns None (ignored, not an error)."""
    try:
        return _inbound.validate_json(raw)
    except ValidationError as exc:
        log.debug("event=message_ignored error_count=%d raw=%.80r", exc.error_count(), raw)
        return None
