"""Configuration helpers for the HomePilot command console."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path

from homepilot.utils import parse_bool, parse_float, parse_int


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_WAKE_WORD = "jarvis"
CLASSIFIER_PROVIDERS = {"openai", "gemini"}


def _normalize_wake_word(value: str | None) -> str:
    normalized = " ".join((value or "").strip().lower().split())
    return normalized or DEFAULT_WAKE_WORD


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class PhraseConfig:
    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int


@dataclass(frozen=True)
class ListeningConfig:
    wake_word: str
    command_wait_seconds: float
    restart_cooldown_ms: int
    language: str


@dataclass(frozen=True)
class SmartHomeConfig:
    base_url: str | None
    token: str | None
    verify_ssl: bool
    timeout: float
    refresh_settle_seconds: float
    poll_seconds: float


@dataclass(frozen=True)
class TimerServiceConfig:
    url: str | None
    token: str | None
    timeout: float


@dataclass(frozen=True)
class ClassifierConfig:
    provider: str
    system_prompt: str
    openai_model: str
    openai_api_key: str | None
    openai_base_url: str
    openai_timeout: int
    gemini_model: str
    gemini_api_key: str | None
    gemini_base_url: str
    gemini_timeout: int


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str

    @property
    def availability_topic(self) -> str:
        return f"{self.topic_base}/availability"


@dataclass(frozen=True)
class VoiceConfig:
    output_enabled: bool
    tts_endpoint: WyomingEndpoint
    stt_endpoint: WyomingEndpoint
    tts_voice: str | None


@dataclass(frozen=True)
class ConsoleConfig:
    hostname: str
    listening: ListeningConfig
    mic: MicConfig
    phrase: PhraseConfig
    smart_home: SmartHomeConfig
    timer_service: TimerServiceConfig
    classifier: ClassifierConfig
    mqtt: MqttConfig
    voice: VoiceConfig
    routines_file: Path | None
    inline_routines: str | None
    catalog_file: Path | None
    log_transcripts: bool
    state_topic: str
    status_topic: str
    result_topic: str
    transcript_topic: str
    response_topic: str
    metrics_topic: str
    command_topic: str

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> ConsoleConfig:
        source = env or os.environ
        hostname = source.get("HOMEPILOT_HOSTNAME") or socket.gethostname()

        listening = ListeningConfig(
            wake_word=_normalize_wake_word(source.get("HOMEPILOT_WAKE_WORD")),
            command_wait_seconds=max(
                1.0, min(30.0, parse_float(source.get("HOMEPILOT_COMMAND_WAIT_SECONDS"), 5.0))
            ),
            restart_cooldown_ms=max(0, parse_int(source.get("HOMEPILOT_RESTART_COOLDOWN_MS"), 300)),
            language=(source.get("HOMEPILOT_LANGUAGE") or "en-US").strip() or "en-US",
        )

        mic_cmd = shlex.split(
            source.get(
                "HOMEPILOT_MIC_CMD",
                "arecord -q -t raw -f S16_LE -c 1 -r 16000 -",
            )
        )
        mic = MicConfig(
            command=mic_cmd,
            rate=parse_int(source.get("HOMEPILOT_MIC_RATE"), 16000),
            width=parse_int(source.get("HOMEPILOT_MIC_WIDTH"), 2),
            channels=parse_int(source.get("HOMEPILOT_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("HOMEPILOT_MIC_CHUNK_MS"), 30),
        )
        phrase = PhraseConfig(
            min_seconds=parse_float(source.get("HOMEPILOT_MIN_PHRASE_SECONDS"), 1.0),
            max_seconds=parse_float(source.get("HOMEPILOT_MAX_PHRASE_SECONDS"), 8.0),
            silence_ms=parse_int(source.get("HOMEPILOT_SILENCE_MS"), 1200),
            rms_floor=parse_int(source.get("HOMEPILOT_RMS_THRESHOLD"), 120),
        )

        smart_home_url = _strip_or_none(source.get("HOMEPILOT_SMARTHOME_URL"))
        smart_home = SmartHomeConfig(
            base_url=smart_home_url.rstrip("/") if smart_home_url else None,
            token=_strip_or_none(source.get("HOMEPILOT_SMARTHOME_TOKEN")),
            verify_ssl=parse_bool(source.get("HOMEPILOT_SMARTHOME_VERIFY_SSL"), True),
            timeout=max(1.0, parse_float(source.get("HOMEPILOT_SMARTHOME_TIMEOUT_SECONDS"), 10.0)),
            refresh_settle_seconds=max(0.0, parse_float(source.get("HOMEPILOT_REFRESH_SETTLE_SECONDS"), 0.5)),
            poll_seconds=max(0.0, parse_float(source.get("HOMEPILOT_POLL_SECONDS"), 30.0)),
        )

        timer_service = TimerServiceConfig(
            url=_strip_or_none(source.get("HOMEPILOT_TIMER_SERVICE_URL")),
            token=_strip_or_none(source.get("HOMEPILOT_TIMER_SERVICE_TOKEN")),
            timeout=max(1.0, parse_float(source.get("HOMEPILOT_TIMER_SERVICE_TIMEOUT_SECONDS"), 10.0)),
        )

        system_prompt = source.get("HOMEPILOT_CLASSIFIER_PROMPT", "").strip()
        prompt_file = source.get("HOMEPILOT_CLASSIFIER_PROMPT_FILE")
        if not system_prompt and prompt_file:
            candidate = Path(prompt_file)
            if candidate.is_file():
                system_prompt = candidate.read_text(encoding="utf-8").strip()
        if not system_prompt:
            system_prompt = DEFAULT_SYSTEM_PROMPT

        provider = (source.get("HOMEPILOT_CLASSIFIER_PROVIDER") or "openai").strip().lower()
        if provider not in CLASSIFIER_PROVIDERS:
            provider = "openai"
        classifier = ClassifierConfig(
            provider=provider,
            system_prompt=system_prompt,
            openai_model=source.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_api_key=source.get("OPENAI_API_KEY"),
            openai_base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_timeout=parse_int(source.get("OPENAI_TIMEOUT_SECONDS"), 30),
            gemini_model=source.get("GEMINI_MODEL", "gemini-1.5-flash-latest"),
            gemini_api_key=source.get("GEMINI_API_KEY"),
            gemini_base_url=source.get("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
            gemini_timeout=parse_int(source.get("GEMINI_TIMEOUT_SECONDS"), 30),
        )

        topic_base = source.get("HOMEPILOT_TOPIC_BASE") or f"homepilot/{hostname}/console"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        voice = VoiceConfig(
            output_enabled=parse_bool(source.get("HOMEPILOT_VOICE_OUTPUT"), True),
            tts_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            ),
            stt_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
                model=_strip_or_none(source.get("HOMEPILOT_STT_MODEL")),
            ),
            tts_voice=_strip_or_none(source.get("HOMEPILOT_TTS_VOICE")),
        )

        return ConsoleConfig(
            hostname=hostname,
            listening=listening,
            mic=mic,
            phrase=phrase,
            smart_home=smart_home,
            timer_service=timer_service,
            classifier=classifier,
            mqtt=mqtt,
            voice=voice,
            routines_file=_existing_path(source.get("HOMEPILOT_ROUTINES_FILE")),
            inline_routines=_strip_or_none(source.get("HOMEPILOT_ROUTINES")),
            catalog_file=_existing_path(source.get("HOMEPILOT_CATALOG_FILE")),
            log_transcripts=parse_bool(source.get("HOMEPILOT_LOG_TRANSCRIPTS"), False),
            state_topic=f"{mqtt.topic_base}/state",
            status_topic=f"{mqtt.topic_base}/status",
            result_topic=f"{mqtt.topic_base}/result",
            transcript_topic=f"{mqtt.topic_base}/transcript",
            response_topic=f"{mqtt.topic_base}/response",
            metrics_topic=f"{mqtt.topic_base}/metrics",
            command_topic=f"{mqtt.topic_base}/command",
        )


DEFAULT_SYSTEM_PROMPT = """You interpret voice commands for a smart home dashboard and can also hold a
short general conversation.
- If the user wants to control devices, the intent is an ACTION. List every device
  and verb mentioned ("turn on", "turn off"). Keep device names as the user said them
  ("kitchen lights", "all fans", "bedroom lamp").
- If the user wants a delay ("in 10 minutes") set delayInSeconds. If the user names a
  clock time ("at 7pm") set targetExecutionTime as an ISO-8601 timestamp.
- If the user asks about a device state or a reading, the intent is a QUERY.
- Anything else is GENERAL: answer briefly and warmly in generalResponse.
- Never invent devices."""


def _existing_path(value: str | None) -> Path | None:
    if not value:
        return None
    candidate = Path(value.strip())
    if candidate.exists():
        return candidate
    return None
