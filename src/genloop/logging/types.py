"""Data types for the diagnostic logging subsystem."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StepRecord:
    """Immutable record of one emitted-or-terminating generation step.

    Attributes:
        timestamp_ns: Monotonic time at the start of the step (ns).
        step: 0-based index of the step within the generate call.
        position: Position the sampled logits belong to.
        used_cells: Context cells in use after the step's decode.
        token_id: Vocabulary index of the sampled token.
        token_rank: Rank of the token among the final candidates.
        token_prob: Probability of the token after filtering.
        num_candidates: Candidates that reached the terminal stage.
        temperature_used: Temperature applied (NaN if no temperature stage ran).
        decode_ms: Time spent in decode for this step (ms).
        sample_ms: Time spent in the sampler chain (ms).
        end_of_generation: Whether the token ended generation.
    """

    # Timing
    timestamp_ns: int
    decode_ms: float
    sample_ms: float

    # Context
    step: int
    position: int
    used_cells: int

    # Selection
    token_id: int
    token_rank: int
    token_prob: float
    num_candidates: int
    temperature_used: float
    end_of_generation: bool
