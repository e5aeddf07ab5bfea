"""Temperature strategy subsystem for genloop.

Computes the per-token sampling temperature used by the temperature stage.
Supports fixed and entropy-based dynamic temperature (EDT) strategies.
"""

from genloop.temperature.base import (
    TemperatureResult,
    TemperatureStrategy,
    compute_shannon_entropy,
)
from genloop.temperature.edt import EDTTemperatureStrategy
from genloop.temperature.fixed import FixedTemperatureStrategy
from genloop.temperature.registry import TemperatureStrategyRegistry

__all__ = [
    "EDTTemperatureStrategy",
    "FixedTemperatureStrategy",
    "TemperatureResult",
    "TemperatureStrategy",
    "TemperatureStrategyRegistry",
    "compute_shannon_entropy",
]
