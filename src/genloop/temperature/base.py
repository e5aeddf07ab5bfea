"""Base classes for temperature strategies.

A strategy decides the temperature the temperature stage applies to the
current candidate set. Strategies are built once per chain from the config
and then called once per sampled token.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from genloop.config import GenLoopConfig


@dataclass(frozen=True, slots=True)
class TemperatureResult:
    """Result of a temperature strategy computation.

    Attributes:
        temperature: Temperature to apply; ``<= 0`` requests greedy selection.
        shannon_entropy: Shannon entropy H of the candidate distribution (nats).
        diagnostics: Strategy-specific details.
    """

    temperature: float
    shannon_entropy: float
    diagnostics: dict[str, Any]


class TemperatureStrategy(ABC):
    """Computes a per-token temperature from the candidate logits.

    Strategies report the Shannon entropy even when their formula ignores
    it, because the step logger records it.
    """

    @classmethod
    @abstractmethod
    def from_config(cls, config: GenLoopConfig) -> TemperatureStrategy:
        """Build the strategy from its config fields."""

    @abstractmethod
    def compute_temperature(self, logits: np.ndarray) -> TemperatureResult:
        """Compute the temperature for one token.

        Args:
            logits: 1-D logits of the current candidates.
        """


def compute_shannon_entropy(logits: np.ndarray) -> float:
    """Compute H = -sum(p_i * ln(p_i)) using a shift-by-max softmax.

    Masked (-inf) logits contribute nothing. Returns 0.0 for degenerate
    distributions.

    Args:
        logits: 1-D logit array.

    Returns:
        Shannon entropy in nats.
    """
    finite = logits[np.isfinite(logits)]
    if finite.size == 0:
        return 0.0
    exp_shifted = np.exp(finite - np.max(finite))
    probs = exp_shifted / np.sum(exp_shifted)

    mask = probs > 0
    entropy = -float(np.sum(probs[mask] * np.log(probs[mask])))
    # Floating-point noise can produce tiny negatives.
    return max(0.0, entropy)
