"""Bounded, time-ordered price history."""

from collections import deque
from collections.abc import Iterator

from perpcore.exceptions import StalePrice
from perpcore.models import PricePoint


class PriceHistory:
    """Ring buffer of PricePoints, oldest evicted first.

    Entries are strictly increasing in observed_at; an append that is not
    newer than the newest entry is rejected and nothing is stored.

    Args:
        capacity: Maximum number of retained points.
    """

    def __init__(self, capacity: int = 60) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive: {capacity}")
        self._points: deque[PricePoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._points.maxlen  # type: ignore[return-value]

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[PricePoint]:
        return iter(self._points)

    def latest(self) -> PricePoint | None:
        return self._points[-1] if self._points else None

    def append(self, point: PricePoint) -> None:
        """Store point, evicting the oldest entry when full.

        Raises:
            StalePrice: If point is not newer than the newest stored entry.
        """
        newest = self.latest()
        if newest is not None and point.observed_at <= newest.observed_at:
            raise StalePrice(
                f"price at {point.observed_at} is not newer than {newest.observed_at}"
            )
        self._points.append(point)

    def points_between(self, start: int, end: int) -> list[PricePoint]:
        """Return points with start <= observed_at <= end, oldest first."""
        return [p for p in self._points if start <= p.observed_at <= end]
