"""Fixed temperature strategy: the same temperature for every token."""

from __future__ import annotations

from typing import TYPE_CHECKING

from genloop.temperature.base import (
    TemperatureResult,
    TemperatureStrategy,
    compute_shannon_entropy,
)
from genloop.temperature.registry import TemperatureStrategyRegistry

if TYPE_CHECKING:
    import numpy as np

    from genloop.config import GenLoopConfig


@TemperatureStrategyRegistry.register("fixed")
class FixedTemperatureStrategy(TemperatureStrategy):
    """Returns ``temperature`` for every token. ``<= 0`` means greedy."""

    def __init__(self, temperature: float) -> None:
        self._temperature = temperature

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> FixedTemperatureStrategy:
        return cls(config.temperature)

    @property
    def temperature(self) -> float:
        return self._temperature

    def compute_temperature(self, logits: np.ndarray) -> TemperatureResult:
        return TemperatureResult(
            temperature=self._temperature,
            shannon_entropy=compute_shannon_entropy(logits),
            diagnostics={"strategy": "fixed"},
        )
