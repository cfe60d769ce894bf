"""
User-visible feedback surfaces

Keeps the transient status line and the persistent result banner in memory and
mirrors them to MQTT together with the conversation state, transcripts, spoken
responses and per-command run metrics.

Topics (under the configured base):
- state: conversation state snapshot (retained)
- status: transient status text
- result: latest result banner (retained)
- transcript / response: what was heard and what was answered
- metrics: stage timings for each finished command
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from homepilot.datetime_utils import utc_now

from .config import ConsoleConfig
from .listening import ConversationState, NoticeKind, Notify
from .mqtt import ConsoleMqtt

LOGGER = logging.getLogger("homepilot-console.feedback")


@dataclass(frozen=True)
class ResultBanner:
    kind: NoticeKind
    message: str
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())


@dataclass
class CommandRunTracker:
    source: str
    command: str
    start: float = field(default_factory=time.monotonic)
    stage_start: float = field(default_factory=time.monotonic)
    current_stage: str | None = None
    stage_durations: dict[str, int] = field(default_factory=dict)

    def begin_stage(self, stage: str) -> None:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        self.current_stage = stage
        self.stage_start = now

    def finalize(self, status: str) -> dict[str, object]:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
            self.current_stage = None
        return {
            "source": self.source,
            "command": self.command,
            "status": status,
            "total_ms": int((now - self.start) * 1000),
            "stages": dict(self.stage_durations),
        }


class FeedbackPublisher:
    def __init__(self, config: ConsoleConfig, mqtt: ConsoleMqtt | None = None) -> None:
        self.config = config
        self.mqtt = mqtt
        self.status_text: str | None = None
        self.banner: ResultBanner | None = None
        self.last_transcript: str | None = None
        self.last_response: str | None = None
        self.last_metrics: dict[str, object] | None = None

    def set_status(self, text: str | None) -> None:
        self.status_text = text
        LOGGER.debug("[feedback] Status: %s", text)
        self._publish(self.config.status_topic, {"text": text or ""})

    def show_result(self, kind: NoticeKind, message: str) -> ResultBanner:
        banner = ResultBanner(kind=kind, message=message)
        self.banner = banner
        LOGGER.info("[feedback] %s: %s", kind, message)
        self._publish(self.config.result_topic, asdict(banner), retain=True)
        return banner

    def handle_notice(self, notice: Notify) -> None:
        self.set_status(notice.message)
        self.show_result(notice.kind, notice.message)

    def publish_state(self, state: ConversationState) -> None:
        self._publish(self.config.state_topic, asdict(state), retain=True)

    def publish_transcript(self, text: str, kind: str) -> None:
        self.last_transcript = text
        if self.config.log_transcripts:
            LOGGER.info("[feedback] Heard (%s): %s", kind, text)
        self._publish(self.config.transcript_topic, {"text": text, "kind": kind})

    def publish_response(self, text: str) -> None:
        self.last_response = text
        self._publish(self.config.response_topic, {"text": text})

    def publish_metrics(self, metrics: dict[str, object]) -> None:
        self.last_metrics = metrics
        LOGGER.debug("[feedback] Run metrics: %s", metrics)
        self._publish(self.config.metrics_topic, metrics)

    def _publish(self, topic: str, payload: Any, retain: bool = False) -> None:
        if self.mqtt is None:
            return
        self.mqtt.publish_json(topic, payload, retain=retain)
