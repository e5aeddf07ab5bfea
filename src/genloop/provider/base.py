"""Abstract base classes for model providers and their decode contexts.

The engine never sees weights or attention state. It talks to two objects:

- a :class:`ModelProvider`, shared and read-only, which owns the vocabulary
  and creates decode contexts;
- a :class:`DecodeContext`, exclusively owned by one session, which holds the
  KV cache and runs ``decode`` / ``encode`` over a :class:`~genloop.batch.Batch`.

Buffer-filling methods follow the two-phase sizing convention: they return the
number of items written, or ``-required`` when the buffer is too small and
nothing was written. :class:`genloop.tokenizer.Tokenizer` hides the retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np

    from genloop.batch import Batch


class DecodeContext(ABC):
    """Per-session inference state (KV cache) created by a provider.

    A context must never be shared between sessions.
    """

    @property
    @abstractmethod
    def n_ctx(self) -> int:
        """Number of KV-cache cells available."""

    @abstractmethod
    def decode(self, batch: Batch) -> int:
        """Run the causal forward pass over *batch*, appending to the KV cache.

        Returns:
            ``0`` on success, any other value on failure (opaque cause).
        """

    @abstractmethod
    def encode(self, batch: Batch) -> int:
        """Run the non-causal encoder pass over *batch* (encoder-decoder models).

        Returns:
            ``0`` on success, any other value on failure.
        """

    @abstractmethod
    def logits(self, index: int) -> np.ndarray:
        """Return the 1-D logits row for batch entry *index* of the last decode.

        Only entries that requested logits have a row.
        """

    @abstractmethod
    def clear(self) -> None:
        """Drop all cached positions."""

    def close(self) -> None:  # noqa: B027
        """Release resources held by the context. Default: no-op."""


class ModelProvider(ABC):
    """Shared, read-only handle on a loaded model and its vocabulary."""

    @property
    @abstractmethod
    def n_vocab(self) -> int:
        """Vocabulary size; every logits row has this length."""

    @abstractmethod
    def tokenize(
        self,
        text: bytes,
        buffer: np.ndarray,
        add_special: bool,
        parse_special: bool,
    ) -> int:
        """Tokenize UTF-8 *text* into *buffer*.

        Returns:
            Number of tokens written, or ``-required`` if *buffer* is too small.
        """

    @abstractmethod
    def detokenize(
        self,
        tokens: Sequence[int],
        buffer: bytearray,
        remove_special: bool,
        unparse_special: bool,
    ) -> int:
        """Render *tokens* as UTF-8 bytes into *buffer*.

        Returns:
            Number of bytes written, or ``-required`` if *buffer* is too small.
        """

    @abstractmethod
    def token_to_piece(self, token: int, buffer: bytearray, special: bool) -> int:
        """Render a single token's piece into *buffer*.

        Returns:
            Number of bytes written, or ``-required`` if *buffer* is too small.
        """

    @abstractmethod
    def is_end_of_generation(self, token: int) -> bool:
        """Whether *token* ends generation (EOS, EOT and similar)."""

    @abstractmethod
    def new_context(self, n_ctx: int) -> DecodeContext:
        """Create a fresh, empty decode context with *n_ctx* cells."""

    def has_encoder(self) -> bool:
        """Whether prompts go through a separate encoder pass first."""
        return False

    def decoder_start_token(self) -> int:
        """First decoder token for encoder-decoder models."""
        raise NotImplementedError(f"{type(self).__name__} has no decoder start token")
