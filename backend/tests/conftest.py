"""Shared test helpers: controllable time and price history builders."""

import asyncio

import pytest

from entrywatch_core.models import PriceHistory, PricePoint

DAY = 86400.0
START_TS = 1_700_006_400.0  # 2023-11-15 00:00 UTC


class FakeClock:
    """Manually advanced clock, usable wherever a time function is injected."""

    def __init__(self, start: float = START_TS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Async sleep stand-in that records delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


def make_history(
    closes: list[float],
    volumes: list[float] | None = None,
    spread: float = 0.005,
    synthetic: bool = False,
) -> PriceHistory:
    """Daily bars opening at the previous close, wicks `spread` beyond the body."""
    if volumes is None:
        volumes = [1000.0] * len(closes)
    points = []
    for i, close in enumerate(closes):
        open_price = closes[i - 1] if i > 0 else close
        points.append(
            PricePoint(
                timestamp=START_TS + i * DAY,
                open=open_price,
                high=max(open_price, close) * (1 + spread),
                low=min(open_price, close) * (1 - spread),
                close=close,
                volume=volumes[i],
            )
        )
    return PriceHistory(points=tuple(points), synthetic=synthetic)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder(clock):
    return SleepRecorder(clock)
