"""Intent classifier adapters (OpenAI / Gemini JSON mode)."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import httpx

from homepilot.datetime_utils import local_now, parse_duration_seconds, parse_timestamp

from .config import ClassifierConfig

IntentType = Literal["action", "query", "general"]
INTENT_TYPES: tuple[IntentType, ...] = ("action", "query", "general")


class IntentClassifierError(RuntimeError):
    """Classifier unreachable or returned something we cannot use."""


@dataclass(frozen=True)
class SingleDeviceAction:
    device: str
    action: str
    delay_seconds: float | None = None
    execute_at: datetime | None = None

    @property
    def deferred(self) -> bool:
        return self.delay_seconds is not None or self.execute_at is not None


@dataclass(frozen=True)
class StructuredIntent:
    intent_type: IntentType
    actions: tuple[SingleDeviceAction, ...] = ()
    query_target: str | None = None
    query_type: str | None = None
    general_response: str | None = None
    suggested_confirmation: str | None = None


_SCHEMA_DESCRIPTION = """Always respond **only** with JSON in the form:
{
  "intentType": "action" | "query" | "general",
  "actions": [
    {"device": "kitchen light", "action": "turn on", "delayInSeconds": 600, "targetExecutionTime": "2025-01-01T19:00:00Z"}
  ],
  "queryTarget": "living room temperature sensor",
  "queryType": "get temperature",
  "suggestedConfirmation": "Okay, turning on the kitchen light.",
  "generalResponse": "Hello! How can I help?"
}
"actions" is required for "action", "queryTarget" for "query" and "generalResponse" for "general".
Omit delayInSeconds and targetExecutionTime for immediate actions; never send both.
Do not set suggestedConfirmation for "general"."""


def parse_intent(payload: Any, now: datetime | None = None) -> StructuredIntent:
    """Validate the classifier's JSON object and build a StructuredIntent.

    ``now`` anchors clock-time phrases such as "7:00 PM" (default: the current local time).
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise IntentClassifierError("Classifier returned non-JSON content") from exc
    if not isinstance(payload, dict):
        raise IntentClassifierError("Classifier response must be a JSON object")

    intent_type = str(payload.get("intentType") or "").strip().lower()
    if intent_type not in INTENT_TYPES:
        raise IntentClassifierError(f"Unknown intent type: {payload.get('intentType')!r}")

    confirmation = _optional_text(payload.get("suggestedConfirmation"))
    if intent_type == "action":
        raw_actions = payload.get("actions")
        if not isinstance(raw_actions, list) or not raw_actions:
            raise IntentClassifierError("Action intent without actions")
        actions = tuple(_parse_action(item, now) for item in raw_actions)
        return StructuredIntent("action", actions=actions, suggested_confirmation=confirmation)

    if intent_type == "query":
        target = _optional_text(payload.get("queryTarget"))
        if not target:
            raise IntentClassifierError("Query intent without queryTarget")
        return StructuredIntent(
            "query",
            query_target=target,
            query_type=_optional_text(payload.get("queryType")),
            suggested_confirmation=confirmation,
        )

    reply = _optional_text(payload.get("generalResponse"))
    if not reply:
        raise IntentClassifierError("General intent without generalResponse")
    return StructuredIntent("general", general_response=reply)


def _parse_action(item: Any, now: datetime | None = None) -> SingleDeviceAction:
    if not isinstance(item, dict):
        raise IntentClassifierError("Malformed action entry")
    device = _optional_text(item.get("device"))
    verb = _optional_text(item.get("action"))
    if not device or not verb:
        raise IntentClassifierError("Action entry requires device and action")
    # A timing the classifier asked for but we cannot read must never run immediately.
    raw_delay = _optional_text(item.get("delayInSeconds"))
    raw_time = _optional_text(item.get("targetExecutionTime"))
    if raw_delay is not None:
        delay = parse_duration_seconds(item.get("delayInSeconds"))
        if delay is None:
            raise IntentClassifierError(f"Unusable delayInSeconds for {device!r}: {raw_delay!r}")
        return SingleDeviceAction(device=device, action=verb, delay_seconds=delay)
    if raw_time is not None:
        execute_at = parse_timestamp(item.get("targetExecutionTime"), reference=now)
        if execute_at is None:
            raise IntentClassifierError(f"Unusable targetExecutionTime for {device!r}: {raw_time!r}")
        return SingleDeviceAction(device=device, action=verb, execute_at=execute_at)
    return SingleDeviceAction(device=device, action=verb)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def format_system_prompt(config: ClassifierConfig, now: datetime) -> str:
    return f"""{config.system_prompt.strip()}

The current local time is {now.strftime("%A, %B %d, %Y %I:%M %p")} ({now.isoformat(timespec="seconds")}).
Use it to answer questions about the time and to compute targetExecutionTime.

{_SCHEMA_DESCRIPTION}
"""


class IntentClassifier:
    async def classify(self, command_text: str) -> StructuredIntent:
        raise NotImplementedError


@dataclass
class _HttpClassifier(IntentClassifier):
    config: ClassifierConfig
    transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], datetime] = local_now
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__), init=False, repr=False)

    async def classify(self, command_text: str) -> StructuredIntent:
        text = (command_text or "").strip()
        if not text:
            raise IntentClassifierError("Nothing to classify")
        content = await self._call_api(text)
        intent = parse_intent(content, now=self.clock())
        self._logger.debug("[intent] %r -> %s", text, intent)
        return intent

    async def _call_api(self, text: str) -> str:
        raise NotImplementedError

    async def _post(self, url: str, payload: dict, headers: dict[str, str], timeout: float) -> dict:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise IntentClassifierError(f"Classifier unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise IntentClassifierError(f"Classifier HTTP error: {response.status_code}")
        try:
            parsed = response.json()
        except ValueError as exc:
            raise IntentClassifierError("Classifier returned a non-JSON body") from exc
        if not isinstance(parsed, dict):
            raise IntentClassifierError("Classifier returned an unexpected body")
        return parsed


class OpenAIIntentClassifier(_HttpClassifier):
    """Call OpenAI-compatible chat completion endpoints."""

    async def _call_api(self, text: str) -> str:
        if not self.config.openai_api_key:
            raise IntentClassifierError("OPENAI_API_KEY is not set")
        payload = {
            "model": self.config.openai_model,
            "messages": [
                {"role": "system", "content": format_system_prompt(self.config, self.clock())},
                {"role": "user", "content": json.dumps({"commandText": text})},
            ],
            "temperature": 0.2,
            "max_tokens": 400,
            "response_format": {"type": "json_object"},
        }
        parsed = await self._post(
            f"{self.config.openai_base_url.rstrip('/')}/chat/completions",
            payload,
            {"Authorization": f"Bearer {self.config.openai_api_key}"},
            self.config.openai_timeout,
        )
        choices = parsed.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise IntentClassifierError("Classifier response missing choices")
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            raise IntentClassifierError("Classifier response missing content")
        return str(content)


class GeminiIntentClassifier(_HttpClassifier):
    """Call Google Gemini (Generative Language) models."""

    async def _call_api(self, text: str) -> str:
        if not self.config.gemini_api_key:
            raise IntentClassifierError("GEMINI_API_KEY is not set")
        model = (self.config.gemini_model or "").strip()
        if not model:
            raise IntentClassifierError("GEMINI_MODEL is not set")
        payload = {
            "contents": [{"role": "user", "parts": [{"text": json.dumps({"commandText": text})}]}],
            "system_instruction": {"parts": [{"text": format_system_prompt(self.config, self.clock())}]},
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": 400,
                "responseMimeType": "application/json",
            },
        }
        parsed = await self._post(
            f"{self.config.gemini_base_url.rstrip('/')}/models/{model}:generateContent",
            payload,
            {"x-goog-api-key": self.config.gemini_api_key},
            self.config.gemini_timeout,
        )
        for candidate in parsed.get("candidates") or []:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            if not isinstance(content, dict):
                continue
            for part in content.get("parts") or []:
                if isinstance(part, dict):
                    value = part.get("text")
                    if isinstance(value, str) and value.strip():
                        return value
        prompt_feedback = parsed.get("promptFeedback")
        if isinstance(prompt_feedback, dict) and prompt_feedback.get("blockReason"):
            raise IntentClassifierError(f"Gemini blocked prompt: {prompt_feedback['blockReason']}")
        raise IntentClassifierError("Classifier response missing content")


def build_intent_classifier(
    config: ClassifierConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IntentClassifier:
    if config.provider == "gemini":
        return GeminiIntentClassifier(config, transport=transport)
    return OpenAIIntentClassifier(config, transport=transport)
