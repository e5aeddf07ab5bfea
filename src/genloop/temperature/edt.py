"""Entropy-based Dynamic Temperature (EDT) strategy.

Adjusts the temperature to the Shannon entropy of the candidate
distribution: peaked distributions get a lower temperature, flat ones a
higher temperature.
"""

from __future__ import annotations

import math
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


@TemperatureStrategyRegistry.register("edt")
class EDTTemperatureStrategy(TemperatureStrategy):
    """Entropy-based Dynamic Temperature.

    Formula::

        H_norm = shannon_entropy / ln(num_candidates)   # Normalized to [0, 1]
        T = base_temp * H_norm ^ exponent
        T = clamp(T, min_temp, max_temp)

    The entropy is normalised by the size of the candidate set reaching the
    stage, so earlier truncation stages change the maximum entropy.
    """

    def __init__(
        self,
        base_temp: float,
        exponent: float,
        min_temp: float,
        max_temp: float,
    ) -> None:
        if min_temp > max_temp:
            raise ValueError(f"min_temp {min_temp} exceeds max_temp {max_temp}")
        self._base_temp = base_temp
        self._exponent = exponent
        self._min_temp = min_temp
        self._max_temp = max_temp

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> EDTTemperatureStrategy:
        return cls(
            base_temp=config.edt_base_temp,
            exponent=config.edt_exponent,
            min_temp=config.edt_min_temp,
            max_temp=config.edt_max_temp,
        )

    def compute_temperature(self, logits: np.ndarray) -> TemperatureResult:
        h = compute_shannon_entropy(logits)
        n = len(logits)
        h_norm = h / math.log(n) if n > 1 else 0.0

        raw = self._base_temp * (h_norm**self._exponent)
        temp = max(self._min_temp, min(self._max_temp, raw))

        return TemperatureResult(
            temperature=temp,
            shannon_entropy=h,
            diagnostics={
                "strategy": "edt",
                "h_norm": h_norm,
                "pre_clamp_temp": raw,
            },
        )
