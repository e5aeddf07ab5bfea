"""Candidate token set flowing through the sampler chain."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def stable_softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax via shift-by-max.

    Args:
        logits: 1-D logit array (may contain -inf for masked tokens).

    Returns:
        Probability array of the same shape, summing to 1.0.
    """
    finite_mask = np.isfinite(logits)
    if not np.any(finite_mask):
        # All masked -- uniform over all tokens (degenerate case).
        n = len(logits)
        return np.full(n, 1.0 / n)

    max_logit = np.max(logits[finite_mask])
    # -inf - max_logit is still -inf, exp(-inf) = 0.
    exp_shifted = np.exp(logits - max_logit)
    result: np.ndarray = exp_shifted / np.sum(exp_shifted)
    return result


@dataclass(frozen=True, slots=True)
class Candidates:
    """Parallel arrays of vocabulary ids and their current logits.

    Stages never mutate a Candidates in place; they return a new one.

    Attributes:
        ids: Vocabulary indices (int64).
        logits: Logits for those indices (float64).
    """

    ids: np.ndarray
    logits: np.ndarray

    @classmethod
    def from_logits(cls, logits: np.ndarray) -> Candidates:
        """Build the full-vocabulary candidate set from one logits row.

        Raises:
            ValueError: If *logits* is not a non-empty 1-D array.
        """
        row = np.array(logits, dtype=np.float64)
        if row.ndim != 1 or row.size == 0:
            raise ValueError(f"expected a non-empty 1-D logits row, got shape {row.shape}")
        return cls(ids=np.arange(row.size, dtype=np.int64), logits=row)

    def __len__(self) -> int:
        return int(self.ids.size)

    def probs(self) -> np.ndarray:
        """Probabilities of the candidates, renormalised over this set."""
        return stable_softmax(self.logits)

    def descending_order(self) -> np.ndarray:
        """Indices into this set ordered by descending logit, ties by position."""
        return np.argsort(-self.logits, kind="stable")

    def take(self, indices: np.ndarray) -> Candidates:
        return Candidates(ids=self.ids[indices], logits=self.logits[indices])

    def with_logits(self, logits: np.ndarray) -> Candidates:
        return Candidates(ids=self.ids, logits=logits)
