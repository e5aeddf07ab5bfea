"""The sampler chain: ordered narrowing stages plus one terminal stage."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from genloop.exceptions import GenLoopError, SamplerMisconfiguration
from genloop.sampling.candidates import Candidates
from genloop.sampling.registry import StageRegistry

if TYPE_CHECKING:
    import numpy as np

    from genloop.config import GenLoopConfig
    from genloop.sampling.base import SamplerStage, SelectionResult

logger = logging.getLogger("genloop")

# Pipeline order of the narrowing stages built from config.
CANONICAL_ORDER: tuple[str, ...] = ("penalties", "top_k", "top_p", "min_p", "temperature")


class SamplerChain:
    """Runs narrowing stages in order, then the terminal stage.

    Invariants checked at construction: at least one stage, exactly one
    terminal stage, and the terminal stage is last.

    A chain belongs to one session at a time (see :meth:`bind`), because
    stateful stages track that session's emitted tokens.

    Args:
        stages: Stages in application order.

    Raises:
        SamplerMisconfiguration: If the invariants do not hold.
    """

    def __init__(self, stages: Sequence[SamplerStage]) -> None:
        stages = list(stages)
        if not stages:
            raise SamplerMisconfiguration("Sampler chain has no stages")
        terminal_positions = [i for i, stage in enumerate(stages) if stage.terminal]
        if not terminal_positions:
            raise SamplerMisconfiguration("Sampler chain has no terminal stage")
        if len(terminal_positions) > 1:
            names = ", ".join(stages[i].name for i in terminal_positions)
            raise SamplerMisconfiguration(f"Sampler chain has several terminal stages: {names}")
        if terminal_positions[0] != len(stages) - 1:
            raise SamplerMisconfiguration(
                f"Terminal stage '{stages[terminal_positions[0]].name}' must be last in the chain"
            )
        self._stages = tuple(stages)
        self._owner: object | None = None

    @property
    def stages(self) -> tuple[SamplerStage, ...]:
        return self._stages

    @property
    def terminal(self) -> SamplerStage:
        return self._stages[-1]

    def bind(self, owner: object) -> None:
        """Claim the chain for *owner*.

        Raises:
            GenLoopError: If another owner already holds it.
        """
        if self._owner is not None and self._owner is not owner:
            raise GenLoopError("Sampler chain is already bound to another session")
        self._owner = owner

    def release(self, owner: object) -> None:
        if self._owner is owner:
            self._owner = None

    def sample(self, logits: np.ndarray) -> SelectionResult:
        """Select one token from a logits row.

        Args:
            logits: 1-D logits for the last decoded position.

        Returns:
            SelectionResult whose diagnostics include the candidate count
            after each narrowing stage.
        """
        candidates = Candidates.from_logits(logits)
        diagnostics: dict[str, Any] = {}
        for stage in self._stages[:-1]:
            candidates = stage.narrow(candidates)
            if len(candidates) == 0:
                raise GenLoopError(f"Sampler stage '{stage.name}' removed every candidate")
            diagnostics[f"{stage.name}_candidates"] = len(candidates)
            diagnostics.update(stage.diagnostics())

        result = self.terminal.select(candidates)
        diagnostics.update(result.diagnostics)
        return dataclasses.replace(result, diagnostics=diagnostics)

    def accept(self, token: int) -> None:
        """Inform every stage that *token* was emitted. Call once per emitted token."""
        for stage in self._stages:
            stage.accept(token)

    def reset(self) -> None:
        for stage in self._stages:
            stage.reset()

    def __repr__(self) -> str:
        return f"SamplerChain({' -> '.join(stage.name for stage in self._stages)})"


def build_sampler_chain(config: GenLoopConfig) -> SamplerChain:
    """Build the canonical chain for *config*, skipping disabled stages.

    Raises:
        SamplerMisconfiguration: If ``sampler_terminal`` or
            ``temperature_strategy`` is unknown, or the terminal is not terminal.
    """
    stages: list[SamplerStage] = []
    try:
        for name in CANONICAL_ORDER:
            stage = StageRegistry.build(name, config)
            if stage is not None:
                stages.append(stage)
        terminal = StageRegistry.build(config.sampler_terminal, config)
    except KeyError as exc:
        raise SamplerMisconfiguration(str(exc.args[0])) from exc

    if terminal is None or not terminal.terminal:
        raise SamplerMisconfiguration(
            f"Stage '{config.sampler_terminal}' cannot terminate a sampler chain"
        )
    stages.append(terminal)
    chain = SamplerChain(stages)
    logger.debug("Built sampler chain %r", chain)
    return chain
