"""Narrowing and reweighting sampler stages.

Each stage consumes the candidate set for the last decoded position and
returns a new, never empty, candidate set. Probabilities are always
renormalised over the set a stage receives.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import TYPE_CHECKING, Any

import numpy as np

from genloop.sampling.base import SamplerStage
from genloop.sampling.registry import StageRegistry
from genloop.temperature.registry import TemperatureStrategyRegistry

if TYPE_CHECKING:
    from genloop.config import GenLoopConfig
    from genloop.sampling.candidates import Candidates
    from genloop.temperature.base import TemperatureResult, TemperatureStrategy


@StageRegistry.register("penalties")
class PenaltyStage(SamplerStage):
    """Repetition, frequency and presence penalties over recent tokens.

    Stateful: remembers the last ``last_n`` accepted tokens. For a candidate
    seen ``c`` times in that window::

        logit = logit * repeat if logit <= 0 else logit / repeat
        logit -= c * frequency + presence
    """

    def __init__(
        self,
        last_n: int,
        repeat_penalty: float = 1.0,
        frequency_penalty: float = 0.0,
        presence_penalty: float = 0.0,
    ) -> None:
        if last_n <= 0:
            raise ValueError(f"last_n must be > 0, got {last_n}")
        self._repeat = repeat_penalty
        self._frequency = frequency_penalty
        self._presence = presence_penalty
        self._history: deque[int] = deque(maxlen=last_n)
        self._counts: Counter[int] = Counter()

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> PenaltyStage | None:
        last_n = config.n_ctx if config.penalty_last_n == -1 else config.penalty_last_n
        inactive = (
            config.repeat_penalty == 1.0
            and config.frequency_penalty == 0.0
            and config.presence_penalty == 0.0
        )
        if last_n == 0 or inactive:
            return None
        return cls(
            last_n=last_n,
            repeat_penalty=config.repeat_penalty,
            frequency_penalty=config.frequency_penalty,
            presence_penalty=config.presence_penalty,
        )

    @property
    def history(self) -> list[int]:
        return list(self._history)

    def count(self, token: int) -> int:
        return self._counts.get(token, 0)

    def accept(self, token: int) -> None:
        if len(self._history) == self._history.maxlen:
            evicted = self._history[0]
            self._counts[evicted] -= 1
            if self._counts[evicted] == 0:
                del self._counts[evicted]
        self._history.append(token)
        self._counts[token] += 1

    def reset(self) -> None:
        self._history.clear()
        self._counts.clear()

    def narrow(self, candidates: Candidates) -> Candidates:
        if not self._counts:
            return candidates
        mask = np.isin(candidates.ids, np.fromiter(self._counts, dtype=np.int64))
        if not np.any(mask):
            return candidates

        logits = candidates.logits.copy()
        hit = logits[mask]
        counts = np.array([self._counts[int(t)] for t in candidates.ids[mask]], dtype=np.float64)
        hit = np.where(hit <= 0, hit * self._repeat, hit / self._repeat)
        hit -= counts * self._frequency + self._presence
        logits[mask] = hit
        return candidates.with_logits(logits)


@StageRegistry.register("top_k")
class TopKStage(SamplerStage):
    """Keep the ``k`` highest-logit candidates, in descending order."""

    def __init__(self, k: int) -> None:
        self._k = k

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> TopKStage | None:
        if config.top_k <= 0:
            return None
        return cls(config.top_k)

    def narrow(self, candidates: Candidates) -> Candidates:
        if self._k <= 0 or self._k >= len(candidates):
            return candidates
        return candidates.take(candidates.descending_order()[: self._k])


@StageRegistry.register("top_p")
class TopPStage(SamplerStage):
    """Nucleus filtering: smallest descending prefix with cumulative prob >= p."""

    def __init__(self, p: float, min_keep: int = 1) -> None:
        self._p = p
        self._min_keep = max(1, min_keep)

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> TopPStage | None:
        if config.top_p >= 1.0:
            return None
        return cls(config.top_p, config.min_keep)

    def narrow(self, candidates: Candidates) -> Candidates:
        if self._p >= 1.0:
            return candidates
        order = candidates.descending_order()
        cumulative = np.cumsum(candidates.probs()[order])
        # First index whose cumulative probability reaches p, inclusive.
        cutoff = int(np.searchsorted(cumulative, self._p, side="left")) + 1
        keep = min(max(cutoff, self._min_keep), len(candidates))
        return candidates.take(order[:keep])


@StageRegistry.register("min_p")
class MinPStage(SamplerStage):
    """Drop candidates whose probability is below ``p * max probability``."""

    def __init__(self, p: float, min_keep: int = 1) -> None:
        self._p = p
        self._min_keep = max(1, min_keep)

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> MinPStage | None:
        if config.min_p <= 0.0:
            return None
        return cls(config.min_p, config.min_keep)

    def narrow(self, candidates: Candidates) -> Candidates:
        if self._p <= 0.0:
            return candidates
        probs = candidates.probs()
        kept = np.flatnonzero(probs >= self._p * np.max(probs))
        if kept.size < self._min_keep:
            return candidates.take(candidates.descending_order()[: self._min_keep])
        return candidates.take(kept)


@StageRegistry.register("temperature")
class TemperatureStage(SamplerStage):
    """Scale logits by ``1 / T``; ``T <= 0`` narrows to the argmax alone.

    The temperature comes from a :class:`~genloop.temperature.base.TemperatureStrategy`.
    """

    def __init__(self, strategy: TemperatureStrategy) -> None:
        self._strategy = strategy
        self._last: TemperatureResult | None = None

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> TemperatureStage:
        return cls(TemperatureStrategyRegistry.build(config))

    @property
    def strategy(self) -> TemperatureStrategy:
        return self._strategy

    def narrow(self, candidates: Candidates) -> Candidates:
        self._last = self._strategy.compute_temperature(candidates.logits)
        temperature = self._last.temperature
        if temperature <= 0.0:
            return candidates.take(np.array([int(np.argmax(candidates.logits))]))
        return candidates.with_logits(candidates.logits / temperature)

    def reset(self) -> None:
        self._last = None

    def diagnostics(self) -> dict[str, Any]:
        if self._last is None:
            return {}
        return {
            "temperature": self._last.temperature,
            "shannon_entropy": self._last.shannon_entropy,
        }
