"""Base classes for sampler stages.

A chain is a list of *narrowing* stages (which shrink or reweight the
candidate set) followed by exactly one *terminal* stage (which picks one
token). Stages that track emitted tokens update themselves in ``accept``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from genloop.config import GenLoopConfig
    from genloop.sampling.candidates import Candidates


@dataclass(frozen=True, slots=True)
class SelectionResult:
    """Result of running the chain over one logits row.

    Attributes:
        token_id: Vocabulary index of the selected token.
        token_rank: Rank among probability-sorted candidates (0 = most probable).
        token_prob: Probability of the selected token after filtering.
        num_candidates: Number of tokens that reached the terminal stage.
        diagnostics: Per-stage info (candidate counts, temperature, draw).
    """

    token_id: int
    token_rank: int
    token_prob: float
    num_candidates: int
    diagnostics: dict[str, Any]


class SamplerStage(ABC):
    """A stage in the sampler chain.

    Subclasses set ``terminal`` and implement either :meth:`narrow`
    (narrowing stages) or :meth:`select` (terminal stages).
    """

    name: ClassVar[str] = "stage"
    terminal: ClassVar[bool] = False

    @classmethod
    def from_config(cls, config: GenLoopConfig) -> SamplerStage | None:
        """Build the stage from *config*, or return ``None`` when it is disabled."""
        raise NotImplementedError(f"{cls.__name__} cannot be built from config")

    def narrow(self, candidates: Candidates) -> Candidates:
        """Return a narrowed or reweighted candidate set (never empty)."""
        raise NotImplementedError(f"{type(self).__name__} is not a narrowing stage")

    def select(self, candidates: Candidates) -> SelectionResult:
        """Pick exactly one token from *candidates*."""
        raise NotImplementedError(f"{type(self).__name__} is not a terminal stage")

    def accept(self, token: int) -> None:  # noqa: B027
        """Record that *token* was emitted. No-op for stateless stages."""

    def reset(self) -> None:  # noqa: B027
        """Return to the state right after construction."""

    def diagnostics(self) -> dict[str, Any]:
        """Extra values from the last narrow/select call, merged into results."""
        return {}


class TerminalStage(SamplerStage):
    """Base for stages that draw the final token."""

    terminal: ClassVar[bool] = True

    @abstractmethod
    def select(self, candidates: Candidates) -> SelectionResult:
        """Pick exactly one token from *candidates*.

        Args:
            candidates: Non-empty candidate set.

        Returns:
            SelectionResult for the chosen token.
        """
