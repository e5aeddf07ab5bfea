"""Exception hierarchy for genloop.

All exceptions derive from GenLoopError, enabling broad catch patterns
at the application boundary while allowing fine-grained handling internally.

Two of these never escape :meth:`genloop.session.Session.generate`:
``ContextOverflow`` and ``DecodeFailure`` end the session's current run and are
reported as a termination reason alongside the tokens generated so far.
"""

from __future__ import annotations


class GenLoopError(Exception):
    """Base exception for all genloop errors."""


class TokenizationError(GenLoopError):
    """Text could not be converted to tokens, or tokens to text.

    Raised when the provider still reports an undersized buffer after the
    single resize-and-retry, or when the input text or the provider's output
    bytes are malformed.
    """


class BatchCapacityExceeded(GenLoopError):
    """A batch write was attempted beyond the batch's fixed capacity.

    This is a programming error: the entry is rejected before any write
    happens, nothing is truncated.
    """


class ContextOverflow(GenLoopError):
    """Submitting the pending batch would exceed the context window capacity."""

    def __init__(self, used_cells: int, incoming: int, capacity: int) -> None:
        super().__init__(
            f"Context overflow: {used_cells} used + {incoming} incoming > {capacity} capacity"
        )
        self.used_cells = used_cells
        self.incoming = incoming
        self.capacity = capacity


class DecodeFailure(GenLoopError):
    """The decode context reported a failure status or a malformed logits buffer."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SamplerMisconfiguration(GenLoopError):
    """The sampler chain is empty or its terminal stage is missing or misplaced.

    Detected when the chain is constructed, before any decode.
    """


class ConfigValidationError(GenLoopError):
    """Configuration override validation failed.

    Raised when per-call overrides contain unknown keys or attempt to
    override non-overridable infrastructure fields.
    """
