"""Price history models on the indicator hot path.

Plain frozen dataclasses with float fields and Unix-second timestamps;
an engine pass over a few hundred bars never touches Pydantic.
"""

from dataclasses import dataclass, field
from typing import Iterator, overload


@dataclass(slots=True, frozen=True)
class PricePoint:
    """One OHLCV bar. Immutable once created."""

    timestamp: float  # Unix timestamp in seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(slots=True, frozen=True)
class PriceHistory:
    """Time-ordered price bars for one asset.

    `synthetic` is set when the bars were generated locally because the
    upstream could not provide real data. Consumers discount confidence for
    synthetic histories but never treat them as errors.
    """

    points: tuple[PricePoint, ...] = field(default_factory=tuple)
    synthetic: bool = False

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[PricePoint]:
        return iter(self.points)

    @overload
    def __getitem__(self, index: int) -> PricePoint: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[PricePoint, ...]: ...

    def __getitem__(self, index):
        return self.points[index]

    @property
    def last(self) -> PricePoint | None:
        return self.points[-1] if self.points else None

    def closes(self) -> list[float]:
        return [p.close for p in self.points]

    def highs(self) -> list[float]:
        return [p.high for p in self.points]

    def lows(self) -> list[float]:
        return [p.low for p in self.points]

    def volumes(self) -> list[float]:
        return [p.volume for p in self.points]
