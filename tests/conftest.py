"""Shared test fixtures and configuration for the HomePilot console test suite.

This module provides reusable fixtures for common test scenarios including:
- Configuration objects (listening, smart-home, timer service, classifier, MQTT)
- A populated device catalog with rooms and groups
- A scripted speech recognizer and a recording speech synthesizer
- Smart-home executor and refresher mocks
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from unittest.mock import AsyncMock, Mock

import pytest

from homepilot.console.catalog import Device, DeviceGroup, Room, TargetCatalog
from homepilot.console.config import (
    ClassifierConfig,
    ConsoleConfig,
    ListeningConfig,
    MqttConfig,
    SmartHomeConfig,
    TimerServiceConfig,
)
from homepilot.console.smart_home import CommandResult, DeviceCommand

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def listening_config():
    """Listening configuration with the default wake word."""
    return ListeningConfig(wake_word="jarvis", command_wait_seconds=5.0, restart_cooldown_ms=300, language="en-US")


@pytest.fixture
def smart_home_config():
    """Smart-home bridge configuration pointing at a fake host."""
    return SmartHomeConfig(
        base_url="http://bridge.local/smarthome",
        token="bridge_token",
        verify_ssl=True,
        timeout=5.0,
        refresh_settle_seconds=0.0,
        poll_seconds=0.0,
    )


@pytest.fixture
def timer_config():
    """Timer service configuration pointing at a fake host."""
    return TimerServiceConfig(url="http://timers.local/api/schedule", token="timer_token", timeout=5.0)


@pytest.fixture
def timer_config_disabled():
    """Timer service without a URL."""
    return TimerServiceConfig(url=None, token=None, timeout=5.0)


@pytest.fixture
def classifier_config():
    """Classifier configuration with both providers keyed."""
    return ClassifierConfig(
        provider="openai",
        system_prompt="You control a smart home.",
        openai_model="gpt-4o-mini",
        openai_api_key="sk-test",
        openai_base_url="https://api.openai.test/v1",
        openai_timeout=10,
        gemini_model="gemini-1.5-flash-latest",
        gemini_api_key="gm-test",
        gemini_base_url="https://gemini.test/v1beta",
        gemini_timeout=10,
    )


@pytest.fixture
def mqtt_config():
    """Basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="homepilot/test-console/console",
    )


@pytest.fixture
def console_config():
    """Full console configuration built from a minimal environment."""
    return ConsoleConfig.from_env({"HOMEPILOT_HOSTNAME": "test-console", "HOMEPILOT_VOICE_OUTPUT": "true"})


# ============================================================================
# Catalog Fixtures
# ============================================================================


def build_devices() -> list[Device]:
    """Devices used throughout the suite.

    L1/L2 kitchen lights, L3 porch light (offline), L4 bedroom lamp, F1 bedroom fan,
    S1 living room temperature, S2 garage humidity (no reading), W1 coffee maker.
    """
    return [
        Device("L1", "Kitchen Ceiling", "light", state="off", online=True),
        Device("L2", "Kitchen Counter", "light", state="off", online=True),
        Device("L3", "Porch Light", "light", state="off", online=False),
        Device("L4", "Bedroom Lamp", "light", state="on", online=True),
        Device("F1", "Bedroom Fan", "fan", state="off", online=True),
        Device(
            "S1",
            "Living Room Temperature",
            "sensor",
            state=21.5,
            online=True,
            attributes={"sensor_type": "temperature", "unit": "°C"},
        ),
        Device(
            "S2",
            "Garage Humidity",
            "sensor",
            state=None,
            online=True,
            attributes={"sensor_type": "humidity", "unit": "%"},
        ),
        Device("W1", "Coffee Maker", "switch", state="off", online=True),
    ]


def build_rooms() -> list[Room]:
    return [
        Room("kitchen", "Kitchen", frozenset({"L1", "L2"})),
        Room("bedroom", "Bedroom", frozenset({"L4", "F1"})),
        Room("living", "Living Room", frozenset({"S1"})),
        Room("patio", "Patio", frozenset({"L3"})),
    ]


def build_groups() -> list[DeviceGroup]:
    return [DeviceGroup("downstairs", "Downstairs", frozenset({"L1", "L3", "W1"}))]


@pytest.fixture
def catalog():
    """Catalog with the standard devices, rooms and groups."""
    return TargetCatalog(build_devices(), build_rooms(), build_groups())


@pytest.fixture
def reversed_catalog():
    """Same catalog content with every collection in reverse order."""
    return TargetCatalog(
        list(reversed(build_devices())),
        list(reversed(build_rooms())),
        list(reversed(build_groups())),
    )


# ============================================================================
# Smart-home Fixtures
# ============================================================================


def succeed_all(commands: list[DeviceCommand]) -> list[CommandResult]:
    return [CommandResult(ids=(command.device_id,), status="SUCCESS") for command in commands]


@pytest.fixture
def executor():
    """Executor whose EXECUTE calls succeed for every device."""
    mock = Mock()
    mock.execute = AsyncMock(side_effect=succeed_all)
    return mock


@pytest.fixture
def refresher():
    """Refresher that echoes the ids it was asked to refresh."""
    mock = Mock()
    mock.refresh = AsyncMock(side_effect=lambda ids: list(ids))
    return mock


# ============================================================================
# Speech Fixtures
# ============================================================================


class FakeRecognizer:
    """Recognizer double driven by the test through the bound callbacks."""

    def __init__(self) -> None:
        self.started = 0
        self.stopped = 0
        self.aborted = 0
        self.on_start: Callable[[], None] | None = None
        self.on_result: Callable[[str], None] | None = None
        self.on_error: Callable[[str, str | None], None] | None = None
        self.on_end: Callable[[], None] | None = None

    def bind(self, *, on_start, on_result, on_error, on_end) -> None:
        self.on_start = on_start
        self.on_result = on_result
        self.on_error = on_error
        self.on_end = on_end

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def abort(self) -> None:
        self.aborted += 1


class FakeSynthesizer:
    """Synthesizer that records what it was asked to say.

    When ``hold`` is set each utterance waits on it, which lets tests pre-empt
    speech that is still playing.
    """

    def __init__(self, hold: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.spoken: list[str] = []
        self.completed: list[str] = []
        self.hold = hold
        self.error = error

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.error is not None:
            raise self.error
        if self.hold is not None:
            await self.hold.wait()
        self.completed.append(text)


@pytest.fixture
def fake_recognizer():
    """Recognizer double with start/stop/abort counters."""
    return FakeRecognizer()


@pytest.fixture
def fake_synthesizer():
    """Synthesizer double that finishes immediately."""
    return FakeSynthesizer()


@pytest.fixture
def make_synthesizer():
    """Factory for synthesizer doubles with a hold event or a forced error."""
    return FakeSynthesizer
