from __future__ import annotations

import logging
import random
from bisect import bisect_right
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from itertools import accumulate
from typing import Dict, List, Optional, Sequence

from .errors import InvalidWeightDistribution, ValidationError
from .project_constants import (
    DEFAULT_SEGMENTS,
    MIN_SEGMENTS,
    WEIGHT_TOLERANCE,
    WEIGHT_TOTAL,
)

log = logging.getLogger("draw")


def parse_weights(weights: Sequence[str]) -> List[float]:
    parsed: List[float] = []
    for raw in weights:
        try:
            value = float(str(raw).strip())
        except ValueError:
            raise InvalidWeightDistribution(f"Weight {raw!r} is not a number")
        if value != value or value < 0:
            raise InvalidWeightDistribution(f"Weight {raw!r} must be a non-negative number")
        parsed.append(value)
    return parsed


def validate_weights(weights: Sequence[str]) -> List[float]:
    probs = parse_weights(weights)
    total = sum(probs)
    if abs(total - float(WEIGHT_TOTAL)) > WEIGHT_TOLERANCE:
        raise InvalidWeightDistribution(
            f"Weights must add up to {WEIGHT_TOTAL}% (got {total:.1f}%)"
        )
    return probs


def build_cumulative(probs: Sequence[float]) -> List[float]:
    return list(accumulate(probs))


def select_index(
    segment_count: int,
    weights: Sequence[str],
    rng: Optional[random.Random] = None,
) -> int:
    """
    Pick a segment index with probability proportional to its weight.

    An empty or length-mismatched weights list means an equal split. A list
    that fails validation refuses the draw.
    """
    rng = rng or random
    if segment_count < MIN_SEGMENTS:
        raise InvalidWeightDistribution(
            f"A wheel needs at least {MIN_SEGMENTS} segments (got {segment_count})"
        )

    if not weights or len(weights) != segment_count:
        return rng.randrange(segment_count)

    cumulative = build_cumulative(validate_weights(weights))
    r = rng.random() * cumulative[-1]
    idx = bisect_right(cumulative, r)
    if idx >= segment_count:
        log.debug("No cumulative bucket above r=%r; falling back to uniform pick", r)
        return rng.randrange(segment_count)
    return idx


def equal_weight(count: int) -> str:
    return f"{float(WEIGHT_TOTAL) / count:.1f}"


def parse_prize(label: str) -> Decimal:
    try:
        value = Decimal(str(label).strip())
    except InvalidOperation:
        raise ValidationError(f"Segment label {label!r} is not a prize amount")
    if not value.is_finite() or value < 0:
        raise ValidationError(f"Segment label {label!r} is not a prize amount")
    return value


@dataclass
class WheelConfig:
    labels: List[str] = field(default_factory=lambda: list(DEFAULT_SEGMENTS))
    weights: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.weights:
            self.weights = [equal_weight(len(self.labels))] * len(self.labels)
        for label in self.labels:
            parse_prize(label)

    def add_segment(self, label: str, weight: str = "") -> None:
        label = label.strip()
        if not label:
            raise ValidationError("Segment label is required")
        parse_prize(label)
        self._align_weights()

        default = equal_weight(len(self.labels) + 1)
        try:
            probability = f"{float(weight):.1f}" if weight.strip() else default
        except ValueError:
            probability = default
        if probability == "nan":
            probability = default

        # Existing weights are left alone; the draw validates the total.
        self.labels.append(label)
        self.weights.append(probability)

    def remove_segment(self, index: int) -> None:
        if len(self.labels) <= MIN_SEGMENTS:
            raise ValidationError(f"The wheel needs at least {MIN_SEGMENTS} segments")
        self._check_index(index)
        self._align_weights()
        del self.labels[index]
        del self.weights[index]

    def set_weight(self, index: int, value: str) -> None:
        self._check_index(index)
        self._align_weights()
        if value.strip() == "":
            self.weights[index] = ""
            return
        try:
            parsed = float(value)
        except ValueError:
            raise ValidationError(f"Weight {value!r} is not a number")
        self.weights[index] = f"{parsed:.1f}"

    def equalize(self) -> None:
        self.weights = [equal_weight(len(self.labels))] * len(self.labels)

    def reset(self) -> None:
        self.labels = list(DEFAULT_SEGMENTS)
        self.equalize()

    def draw(self, rng: Optional[random.Random] = None) -> int:
        return select_index(len(self.labels), self.weights, rng)

    def prize_at(self, index: int) -> Decimal:
        return parse_prize(self.labels[index])

    def to_dict(self) -> Dict[str, List[str]]:
        return {"segments": list(self.labels), "weights": list(self.weights)}

    def _align_weights(self) -> None:
        # A mismatched list draws as an equal split; edit from that split.
        if len(self.weights) != len(self.labels):
            self.equalize()

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.labels):
            raise ValidationError(f"No segment at position {index}")


def simulate(
    config: WheelConfig, draws: int, rng: Optional[random.Random] = None
) -> List[float]:
    """Empirical frequency (percent) of each segment over `draws` spins."""
    counts = [0] * len(config.labels)
    for _ in range(draws):
        counts[config.draw(rng)] += 1
    return [100.0 * c / draws for c in counts]
