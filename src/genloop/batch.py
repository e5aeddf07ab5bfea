"""Checked-capacity batch of decode entries.

A batch holds the ``(token, position, sequence ids, wants logits)`` entries
submitted in one decode call. Storage is preallocated numpy arrays sized at
construction; ``clear()`` only resets the count so the same arrays are reused
step after step.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from genloop.exceptions import BatchCapacityExceeded


@dataclass(frozen=True, slots=True)
class BatchEntry:
    """Read-only view of one batch entry.

    Attributes:
        token: Token id to feed.
        position: Position of the token in its sequence (>= 0).
        sequence_ids: Sequences the entry belongs to (non-empty).
        wants_logits: Whether the decode call must produce logits for it.
    """

    token: int
    position: int
    sequence_ids: tuple[int, ...]
    wants_logits: bool


class Batch:
    """Fixed-capacity container of decode entries.

    Every write validates ``count < capacity`` before mutating anything and
    raises :class:`BatchCapacityExceeded` otherwise.

    Args:
        capacity: Maximum number of entries.
        n_seq_max: Maximum number of sequence ids per entry.
    """

    def __init__(self, capacity: int, n_seq_max: int = 1) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        if n_seq_max <= 0:
            raise ValueError(f"n_seq_max must be > 0, got {n_seq_max}")
        self._capacity = capacity
        self._n_seq_max = n_seq_max
        self._count = 0

        self.token = np.zeros(capacity, dtype=np.int32)
        self.pos = np.zeros(capacity, dtype=np.int32)
        self.n_seq_id = np.zeros(capacity, dtype=np.int32)
        self.seq_id = np.zeros((capacity, n_seq_max), dtype=np.int32)
        self.logits = np.zeros(capacity, dtype=np.bool_)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def n_seq_max(self) -> int:
        return self._n_seq_max

    @property
    def count(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    def clear(self) -> None:
        """Drop all entries, keeping the backing storage."""
        self._count = 0

    def add(
        self,
        token: int,
        position: int,
        sequence_ids: Sequence[int],
        wants_logits: bool,
    ) -> None:
        """Append one entry.

        Args:
            token: Token id.
            position: Position in the sequence, must be >= 0.
            sequence_ids: Non-empty sequence ids, at most ``n_seq_max``.
            wants_logits: Whether logits are needed for this entry.

        Raises:
            BatchCapacityExceeded: If the batch is already full.
            ValueError: If position or sequence ids are invalid.
        """
        if self._count >= self._capacity:
            raise BatchCapacityExceeded(
                f"Batch is full ({self._capacity} entries), cannot add token {token}"
            )
        if position < 0:
            raise ValueError(f"position must be >= 0, got {position}")
        if not sequence_ids:
            raise ValueError("sequence_ids must not be empty")
        if len(sequence_ids) > self._n_seq_max:
            raise ValueError(
                f"Entry has {len(sequence_ids)} sequence ids, batch allows {self._n_seq_max}"
            )

        i = self._count
        self.token[i] = token
        self.pos[i] = position
        self.n_seq_id[i] = len(sequence_ids)
        self.seq_id[i, : len(sequence_ids)] = sequence_ids
        self.logits[i] = wants_logits
        self._count = i + 1

    def add_sequence(
        self,
        tokens: Sequence[int],
        start_position: int,
        sequence_ids: Sequence[int] = (0,),
        logits_last: bool = True,
    ) -> None:
        """Append consecutive tokens, requesting logits for the final one only.

        The whole run is checked against the remaining capacity first, so a
        run that does not fit leaves the batch untouched.

        Raises:
            BatchCapacityExceeded: If the run does not fit.
        """
        if self._count + len(tokens) > self._capacity:
            raise BatchCapacityExceeded(
                f"Cannot add {len(tokens)} tokens to batch with "
                f"{self._capacity - self._count} free entries"
            )
        last = len(tokens) - 1
        for offset, token in enumerate(tokens):
            self.add(token, start_position + offset, sequence_ids, logits_last and offset == last)

    @property
    def logits_index(self) -> int:
        """Index of the last entry that requests logits, or -1 if none does."""
        requested = np.flatnonzero(self.logits[: self._count])
        if requested.size == 0:
            return -1
        return int(requested[-1])

    def entry(self, index: int) -> BatchEntry:
        if not 0 <= index < self._count:
            raise IndexError(f"batch index {index} out of range for {self._count} entries")
        n_seq = int(self.n_seq_id[index])
        return BatchEntry(
            token=int(self.token[index]),
            position=int(self.pos[index]),
            sequence_ids=tuple(int(s) for s in self.seq_id[index, :n_seq]),
            wants_logits=bool(self.logits[index]),
        )

    def entries(self) -> Iterator[BatchEntry]:
        for i in range(self._count):
            yield self.entry(i)

    def __repr__(self) -> str:
        return f"Batch(count={self._count}, capacity={self._capacity})"
