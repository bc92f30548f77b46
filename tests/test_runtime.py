"""Tests for the inference runtime bootstrap poll."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from sortify.config import Settings
from sortify.errors import RuntimeBootstrapFailure
from sortify.ml.runtime import BootstrapPoller, required_provider, runtime_available


class _Clock:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def _probe_sequence(*answers: bool):
    remaining = list(answers)
    calls: list[bool] = []

    def probe() -> bool:
        answer = remaining.pop(0) if remaining else answers[-1]
        calls.append(answer)
        return answer

    return probe, calls


class TestBootstrapPoller:
    async def test_ready_on_first_attempt(self) -> None:
        clock = _Clock()
        poller = BootstrapPoller(probe=lambda: True, sleep=clock.sleep)

        await poller.wait()

        assert poller.ready is True
        assert poller.attempts == 1
        assert clock.sleeps == []

    async def test_retries_on_fixed_interval(self) -> None:
        clock = _Clock()
        probe, calls = _probe_sequence(False, False, True)
        poller = BootstrapPoller(probe=probe, max_attempts=5, interval=0.1, sleep=clock.sleep)

        await poller.wait()

        assert poller.ready is True
        assert poller.attempts == 3
        assert calls == [False, False, True]
        assert clock.sleeps == [0.1, 0.1]

    async def test_exhaustion_raises(self) -> None:
        clock = _Clock()
        probe, calls = _probe_sequence(False)
        poller = BootstrapPoller(probe=probe, max_attempts=4, interval=0.25, sleep=clock.sleep)

        with pytest.raises(RuntimeBootstrapFailure):
            await poller.wait()

        assert poller.exhausted is True
        assert len(calls) == 4
        assert clock.sleeps == [0.25, 0.25, 0.25]

    async def test_succeeds_on_last_attempt(self) -> None:
        clock = _Clock()
        probe, _ = _probe_sequence(False, False, True)
        poller = BootstrapPoller(probe=probe, max_attempts=3, sleep=clock.sleep)

        await poller.wait()

        assert poller.ready is True
        assert poller.exhausted is False

    def test_attempt_after_exhaustion_does_not_probe(self) -> None:
        probe, calls = _probe_sequence(False)
        poller = BootstrapPoller(probe=probe, max_attempts=2)

        assert poller.attempt() is False
        assert poller.attempt() is False
        assert poller.attempt() is False

        assert len(calls) == 2
        assert poller.attempts == 2

    def test_attempt_after_ready_does_not_probe(self) -> None:
        probe, calls = _probe_sequence(True)
        poller = BootstrapPoller(probe=probe)

        assert poller.attempt() is True
        assert poller.attempt() is True
        assert len(calls) == 1

    def test_from_settings(self) -> None:
        settings = Settings(bootstrap_max_attempts=7, bootstrap_interval=0.5)

        poller = BootstrapPoller.from_settings(settings)

        assert poller.max_attempts == 7
        assert poller.interval == 0.5
        assert poller.attempts == 0


class TestRuntimeAvailable:
    def test_required_provider(self) -> None:
        assert required_provider("cpu") == "CPUExecutionProvider"
        assert required_provider("cuda") == "CUDAExecutionProvider"
        assert required_provider("openvino") == "OpenVINOExecutionProvider"

    @patch("sortify.ml.runtime.onnxruntime.get_available_providers")
    def test_checks_available_providers(self, mock_providers) -> None:  # noqa: ANN001
        mock_providers.return_value = ["CPUExecutionProvider"]

        assert runtime_available("cpu") is True
        assert runtime_available("cuda") is False
