"""KV-cache capacity accounting for one session.

The cache itself lives inside the decode context and is opaque; the engine
only tracks how many cells it has filled. Cells are never released within a
session, so ``used_cells`` only grows until :meth:`ContextWindow.reset`.
"""

from __future__ import annotations

from genloop.exceptions import ContextOverflow


class ContextWindow:
    """Used vs. total cell counter that gates every decode call.

    Args:
        capacity: Total number of KV-cache cells (the context's ``n_ctx``).
    """

    __slots__ = ("_capacity", "_used_cells")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._capacity = capacity
        self._used_cells = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def used_cells(self) -> int:
        return self._used_cells

    @property
    def remaining(self) -> int:
        return self._capacity - self._used_cells

    def fits(self, incoming: int) -> bool:
        """Whether *incoming* more cells fit without exceeding capacity."""
        return self._used_cells + incoming <= self._capacity

    def check(self, incoming: int) -> None:
        """Raise if *incoming* more cells do not fit.

        Raises:
            ContextOverflow: If ``used_cells + incoming > capacity``.
        """
        if not self.fits(incoming):
            raise ContextOverflow(self._used_cells, incoming, self._capacity)

    def commit(self, decoded: int) -> None:
        """Record that a batch of *decoded* entries was successfully decoded.

        Raises:
            ContextOverflow: If the commit would exceed capacity, which means
                the caller skipped :meth:`check`.
        """
        if decoded < 0:
            raise ValueError(f"decoded must be >= 0, got {decoded}")
        self.check(decoded)
        self._used_cells += decoded

    def reset(self) -> None:
        """Forget all used cells. Only valid together with clearing the KV cache."""
        self._used_cells = 0

    def __repr__(self) -> str:
        return f"ContextWindow(used_cells={self._used_cells}, capacity={self._capacity})"
