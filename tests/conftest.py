"""
Shared fixtures: a deterministic scripted sampler and the two reference
readings used throughout the scoring tests.
"""
from datetime import datetime, timedelta, timezone

import pytest

from smartproctor.errors import SamplerUnavailable
from smartproctor.modules.signal_sampler import SignalReading, SignalSampler


class ScriptedSampler(SignalSampler):
    """
    Replays a fixed list of readings, then repeats `default`.
    An Exception instance in the script is raised instead of returned.
    """

    def __init__(self, readings=None, default=None, fail_open=False):
        self.readings    = list(readings or [])
        self.default     = default or SignalReading()
        self.fail_open   = fail_open
        self.is_open     = False
        self.open_calls   = 0
        self.close_calls  = 0
        self.sample_calls = 0

    def open(self):
        self.open_calls += 1
        if self.fail_open:
            raise SamplerUnavailable("camera permission denied")
        self.is_open = True

    def sample(self):
        self.sample_calls += 1
        item = self.readings.pop(0) if self.readings else self.default
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.close_calls += 1
        self.is_open = False


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture
def clean_reading():
    return SignalReading()


@pytest.fixture
def scenario_a():
    """Composite 70.5 → score 70: identity alert fires, risk alert does not."""
    return SignalReading(
        authenticity=40,
        attention=30,
        stress=90,
        identity_confidence=50,
        identity_verified=False,
        connection_stability=50,
        surveillance_threat_score=0,
    )


@pytest.fixture
def scenario_b():
    """Composite 79.5 → score 79: identity and risk alerts both fire."""
    return SignalReading(
        authenticity=10,
        attention=30,
        stress=90,
        identity_confidence=50,
        identity_verified=False,
        connection_stability=50,
        surveillance_threat_score=0,
    )


@pytest.fixture
def scripted_sampler():
    return ScriptedSampler


@pytest.fixture
def step_clock():
    return StepClock()
