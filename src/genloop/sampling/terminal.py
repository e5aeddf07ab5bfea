"""Terminal sampler stages: draw exactly one token from the final candidates.

The distribution sampler orders candidates by descending probability, builds
their CDF and looks up one uniform draw from a seeded numpy Generator:

    u near 0.0: selects the most probable token
    u near 1.0: selects the least probable surviving token

Same seed and same candidate distribution give the same token. When only one
candidate has non-zero probability no random number is consumed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from genloop.sampling.base import SelectionResult, TerminalStage
from genloop.sampling.registry import StageRegistry

if TYPE_CHECKING:
    from genloop.config import GenLoopConfig
    from genloop.sampling.candidates import Candidates


@StageRegistry.register("dist")
class DistributionSampler(TerminalStage):
    """Seeded CDF sampling over the candidate distribution.

    Args:
        seed: RNG seed; ``None`` seeds from OS entropy.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._seed = seed
        self._rng = np.random.default_rng(seed)

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> DistributionSampler:
        return cls(config.seed)

    @property
    def seed(self) -> int | None:
        return self._seed

    def reset(self) -> None:
        """Reseed the generator, restarting its sequence."""
        self._rng = np.random.default_rng(self._seed)

    def select(self, candidates: Candidates) -> SelectionResult:
        probs = candidates.probs()
        order = np.argsort(-probs, kind="stable")
        sorted_probs = probs[order]
        num_candidates = int(np.count_nonzero(sorted_probs > 0))

        if num_candidates <= 1:
            rank = 0
            u = None
        else:
            u = float(self._rng.random())
            cdf = np.cumsum(sorted_probs[:num_candidates])
            rank = min(int(np.searchsorted(cdf, u, side="right")), num_candidates - 1)

        index = int(order[rank])
        return SelectionResult(
            token_id=int(candidates.ids[index]),
            token_rank=rank,
            token_prob=float(sorted_probs[rank]),
            num_candidates=max(num_candidates, 1),
            diagnostics={"u": u},
        )


@StageRegistry.register("greedy")
class GreedySampler(TerminalStage):
    """Always pick the highest-logit candidate (first on ties)."""

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> GreedySampler:
        return cls()

    def select(self, candidates: Candidates) -> SelectionResult:
        index = int(np.argmax(candidates.logits))
        return SelectionResult(
            token_id=int(candidates.ids[index]),
            token_rank=0,
            token_prob=float(candidates.probs()[index]),
            num_candidates=len(candidates),
            diagnostics={"greedy": True},
        )
