from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from .project_constants import EXTRA_TURNS, SPIN_SECONDS

log = logging.getLogger("wheel")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class SpinEnded:
    index: int
    prize: str
    rotation: float


SpinListener = Callable[[SpinEnded], None]


def segment_center(index: int, segment_count: int) -> float:
    angle = 360.0 / segment_count
    return index * angle + angle / 2


def target_rotation(current: float, index: int, segment_count: int) -> float:
    """
    Rotation that lands the pointer on the middle of segment `index` after at
    least EXTRA_TURNS full turns from `current`.
    """
    base = math.floor(current / 360.0) * 360.0
    target = base + EXTRA_TURNS * 360.0 + (360.0 - segment_center(index, segment_count))
    if target < current + EXTRA_TURNS * 360.0:
        target += 360.0
    return target


class PrizeWheel:
    def __init__(
        self,
        spin_seconds: float = SPIN_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.spin_seconds = spin_seconds
        self.rotation = 0.0
        self.winner_index: Optional[int] = None
        self._sleep = sleep
        self._spinning = False
        self._listeners: List[SpinListener] = []

    @property
    def spinning(self) -> bool:
        return self._spinning

    def on_spin_end(self, listener: SpinListener) -> None:
        self._listeners.append(listener)

    async def spin(self, index: int, labels: Sequence[str]) -> Optional[str]:
        """
        Animate towards `index` and return its label once the animation window
        has elapsed. Returns None without doing anything while already spinning.
        """
        if self._spinning:
            log.debug("Spin requested while the wheel is turning; ignored")
            return None
        if not 0 <= index < len(labels):
            raise IndexError(f"Segment {index} out of range for {len(labels)} segments")

        self._spinning = True
        self.winner_index = None
        self.rotation = target_rotation(self.rotation, index, len(labels))
        log.debug("Spinning to %.1f deg (segment %d)", self.rotation, index)
        try:
            await self._sleep(self.spin_seconds)
        finally:
            self._spinning = False

        self.winner_index = index
        event = SpinEnded(index=index, prize=labels[index], rotation=self.rotation)
        for listener in self._listeners:
            listener(event)
        return event.prize
