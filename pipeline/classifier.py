import asyncio
import json
import logging
import os
import re
import time
from typing import Any, Optional

import httpx
from groq import AsyncGroq

from config import ClassifierConfig

from .transcript import ClassificationOutcome, Clean, Failed, Flagged

log = logging.getLogger("hindsight.classifier")

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```$")

MAX_NAME_WORDS = 4


def strip_code_fences(text: str) -> str:
    """Remove surrounding ```...``` fences (with or without 'json') if present."""
    t = text.strip()
    t = _FENCE_OPEN_RE.sub("", t)
    t = _FENCE_CLOSE_RE.sub("", t)
    return t.strip()


def parse_classification(raw: str) -> ClassificationOutcome:
    """Strictly map a model reply onto Clean | Flagged | Failed.

    Accepted shapes:
        {"fallacy": false}
        {"fallacy": true, "name": "<str>", "reasoning": "<str>"}
    """
    body = strip_code_fences(raw or "")
    if not body:
        return Failed("empty response")
    try:
        data: Any = json.loads(body)
    except (ValueError, RecursionError) as exc:
        return Failed(f"unparseable response: {exc}")

    if not isinstance(data, dict):
        return Failed(f"expected object, got {type(data).__name__}")

    verdict = data.get("fallacy")
    if not isinstance(verdict, bool):
        return Failed("missing or non-boolean 'fallacy'")
    if verdict is False:
        return Clean()

    name = data.get("name")
    reasoning = data.get("reasoning")
    if not isinstance(name, str) or not name.strip():
        return Failed("flagged response without 'name'")
    if not isinstance(reasoning, str) or not reasoning.strip():
        return Failed("flagged response without 'reasoning'")

    name = name.strip()
    words = name.split()
    if len(words) > MAX_NAME_WORDS:
        # Spoken aloud, so keep it short even when the model rambles.
        name = " ".join(words[:MAX_NAME_WORDS])
    return Flagged(name=name, reasoning=reasoning.strip())


class GroqFallacyClassifier:
    """Remote fallacy classifier.  One non-streaming request per utterance, no retries."""

    def __init__(
        self,
        config: ClassifierConfig,
        client: Optional[AsyncGroq] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._http_client = http_client

    def _get_client(self) -> AsyncGroq:
        if self._client is None:
            self._client = AsyncGroq(
                api_key=os.environ["GROQ_API_KEY"],
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    async def _call_model(self, utterance: str) -> str:
        cfg = self._config
        response = await self._get_client().chat.completions.create(
            model=cfg.model,
            messages=[
                {"role": "user", "content": cfg.prompt.format(utterance=utterance)},
            ],
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            stream=False,
        )
        return response.choices[0].message.content or ""

    async def classify(self, utterance: str) -> ClassificationOutcome:
        start_ts = time.monotonic()
        log.debug("event=classifier_start utterance_len=%d", len(utterance))

        try:
            raw = await asyncio.wait_for(
                self._call_model(utterance),
                timeout=self._config.timeout_sec,
            )
        except asyncio.TimeoutError:
            log.warning(
                "event=classifier_timeout timeout_sec=%.1f utterance_len=%d",
                self._config.timeout_sec, len(utterance),
            )
            return Failed("timeout")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("event=classifier_error error=%s", exc)
            return Failed(f"transport error: {exc}")

        outcome = parse_classification(raw)
        elapsed_ms = (time.monotonic() - start_ts) * 1000
        if isinstance(outcome, Failed):
            log.warning(
                "event=classifier_invalid_response reason=%s raw=%.120r resolve_ms=%.1f",
                outcome.reason, raw, elapsed_ms,
            )
        else:
            log.info(
                "event=classifier_result state=%s resolve_ms=%.1f",
                outcome.state, elapsed_ms,
            )
        return outcome
