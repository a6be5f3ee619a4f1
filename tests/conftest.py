"""Shared fixtures."""

import pytest


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_700_050_200.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
