"""Tests for device state questions."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from homepilot.console.catalog import Device
from homepilot.console.query_responder import QueryResponder, format_device_state
from homepilot.console.smart_home import SmartHomeError

pytestmark = pytest.mark.anyio


class TestFormatDeviceState:
    """Test state sentence fragments."""

    @pytest.mark.parametrize(
        ("device", "expected"),
        [
            (Device("L1", "Kitchen Ceiling", "light", state="on", online=True), "Kitchen Ceiling is on"),
            (Device("L1", "Kitchen Ceiling", "light", state=False, online=True), "Kitchen Ceiling is off"),
            (Device("L1", "Kitchen Ceiling", "light", state="on", online=False), "Kitchen Ceiling is offline"),
            (Device("S", "Hall", "sensor", state=20.0, online=True, attributes={"unit": "°C"}), "Hall is 20°C"),
            (Device("S", "Hall", "sensor", state=48.5, online=True, attributes={"unit": "%"}), "Hall is 48.5%"),
            (Device("S", "Hall", "sensor", state="unknown", online=True), "Hall is unavailable"),
            (Device("T", "Thermostat", "climate", state="heat", online=True), "Thermostat is heat"),
        ],
    )
    def test_format(self, device, expected):
        assert format_device_state(device) == expected


class TestQueryResponder:
    """Test refresh-then-read answers."""

    async def test_refreshes_before_reading(self, catalog):
        """Test that the answer reflects the refreshed state, not the cached one."""
        refresher = Mock()

        async def refresh(ids):
            catalog.apply_states({"S1": (22.0, True)})
            return list(ids)

        refresher.refresh = AsyncMock(side_effect=refresh)
        responder = QueryResponder(catalog, refresher=refresher, settle_seconds=0)

        answer = await responder.answer("living room temperature", "get temperature")

        refresher.refresh.assert_awaited_once_with(("S1",))
        assert answer.found
        assert answer.text == "Living Room Temperature is 22°C."
        assert answer.device_ids == ("S1",)

    async def test_unknown_reading(self, catalog, refresher):
        answer = await QueryResponder(catalog, refresher=refresher, settle_seconds=0).answer("garage humidity")
        assert answer.text == "Garage Humidity is unavailable."

    async def test_room_query(self, catalog, refresher):
        answer = await QueryResponder(catalog, refresher=refresher, settle_seconds=0).answer("bedroom")
        assert answer.text == "Bedroom Fan is off. Bedroom Lamp is on."

    async def test_sensor_type(self, catalog):
        answer = await QueryResponder(catalog).answer("what's the humidity")
        assert answer.device_ids == ("S2",)

    async def test_refresh_failure_uses_cache(self, catalog):
        refresher = Mock()
        refresher.refresh = AsyncMock(side_effect=SmartHomeError("bridge down"))
        answer = await QueryResponder(catalog, refresher=refresher, settle_seconds=5).answer("bedroom lamp")
        assert answer.text == "Bedroom Lamp is on."

    async def test_offline_device(self, catalog, refresher):
        answer = await QueryResponder(catalog, refresher=refresher).answer("porch light")
        assert answer.found
        assert answer.text == "Porch Light is offline."
        refresher.refresh.assert_not_awaited()

    async def test_not_found(self, catalog, refresher):
        answer = await QueryResponder(catalog, refresher=refresher).answer("garage door")
        assert not answer.found
        assert answer.text == "I couldn't find garage door."
