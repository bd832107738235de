"""Tests for the actuator coordinator's effects and failure isolation."""

import pytest

from config import IndicatorConfig, PulseConfig, SpeechConfig
from pipeline.actuators import ActuatorCoordinator, LoggingDevice
from pipeline.transcript import TranscriptStats

from conftest import RecordingDevice


class TestOutcomeEffects:
    @pytest.mark.asyncio
    async def test_flagged_speaks_then_pulses_red_once(self, device):
        await ActuatorCoordinator(device).on_flagged("Straw Man")
        assert device.calls == [
            ("speak", "Straw Man"),
            ("indicator", "red", 150, 100, 1),
        ]

    @pytest.mark.asyncio
    async def test_clean_pulses_green_without_speech(self, device):
        await ActuatorCoordinator(device).on_clean()
        assert device.spoken == []
        assert device.indicators == [("green", 150, 100, 1)]

    @pytest.mark.asyncio
    async def test_no_light_capability_skips_indicator(self):
        device = RecordingDevice(has_light=False)
        coordinator = ActuatorCoordinator(device)

        await coordinator.on_flagged("Red Herring")
        await coordinator.on_clean()

        assert device.calls == [("speak", "Red Herring")]

    @pytest.mark.asyncio
    async def test_custom_alert_pulse(self, device):
        indicator = IndicatorConfig(alert=PulseConfig(color="orange", on_ms=300, off_ms=50, count=2))
        await ActuatorCoordinator(device, indicator=indicator).on_flagged("False Cause")
        assert device.indicators == [("orange", 300, 50, 2)]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_speech_failure_still_attempts_light(self):
        device = RecordingDevice(fail_speak=True)
        await ActuatorCoordinator(device).on_flagged("Straw Man")
        assert device.indicators == [("red", 150, 100, 1)]

    @pytest.mark.asyncio
    async def test_light_failure_is_swallowed(self):
        device = RecordingDevice(fail_light=True)
        await ActuatorCoordinator(device).on_clean()
        assert len(device.indicators) == 1


class TestSessionEffects:
    @pytest.mark.asyncio
    async def test_ready_speaks_and_holds_green(self, device):
        await ActuatorCoordinator(device).on_ready()
        assert device.calls == [
            ("speak", "HindSight ready."),
            ("indicator", "green", 1500, None, None),
        ]

    @pytest.mark.asyncio
    async def test_ready_phrase_can_be_disabled(self, device):
        await ActuatorCoordinator(device, speech=SpeechConfig(ready_phrase=None)).on_ready()
        assert device.spoken == []

    @pytest.mark.asyncio
    async def test_announce_counts(self, device):
        coordinator = ActuatorCoordinator(device)
        await coordinator.announce_counts(TranscriptStats(total_turns=1, fallacy_count=1))
        await coordinator.announce_counts(TranscriptStats(total_turns=5, fallacy_count=2))
        assert device.spoken == ["1 turn, 1 fallacy.", "5 turns, 2 fallacies."]

    @pytest.mark.asyncio
    async def test_announcements_can_be_disabled(self, device):
        speech = SpeechConfig(announce_counts=False, announce_saved=False)
        coordinator = ActuatorCoordinator(device, speech=speech)
        await coordinator.announce_counts(TranscriptStats(total_turns=3, fallacy_count=0))
        await coordinator.announce_saved()
        assert device.calls == []


class TestLoggingDevice:
    @pytest.mark.asyncio
    async def test_logs_commands(self, caplog):
        caplog.set_level("INFO", logger="hindsight.actuators")
        device = LoggingDevice()
        await device.speak("Ad Hominem")
        await device.set_indicator("red", 150, 100, 1)
        assert "event=device_speak" in caplog.text
        assert "event=device_indicator color=red" in caplog.text
