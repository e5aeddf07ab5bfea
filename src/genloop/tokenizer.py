"""Tokenizer adapter: text <-> tokens over a provider's two-phase buffer API.

Provider calls fill a caller-supplied buffer and return either the number of
items written or ``-required`` when the buffer is too small.
:func:`size_then_fill` performs that protocol once, resizing and retrying a
single time, and returns an owned, correctly-sized result.

Whitespace at token boundaries is a known lossy edge. Jointly decoding a
sequence strips the leading space the first piece carries (the SentencePiece
dummy prefix) unless a leading BOS was removed, whereas decoding pieces one at
a time keeps every piece's leading space. Concatenated pieces therefore do not
always equal the joint decode.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

import numpy as np

from genloop.exceptions import TokenizationError

if TYPE_CHECKING:
    from genloop.provider.base import ModelProvider

logger = logging.getLogger("genloop")

BufferT = TypeVar("BufferT", np.ndarray, bytearray)

_PIECE_BUFFER_SIZE = 16


def size_then_fill(
    fill: Callable[[BufferT], int],
    allocate: Callable[[int], BufferT],
    initial_size: int,
    what: str,
) -> tuple[BufferT, int]:
    """Run a two-phase sizing call, resizing and retrying exactly once.

    Args:
        fill: Writes into the buffer, returns count or ``-required``.
        allocate: Creates a buffer of the given size.
        initial_size: Size of the first buffer.
        what: Operation name for error messages.

    Returns:
        Tuple of (buffer, number of valid items at its start).

    Raises:
        TokenizationError: If the retried call still does not fit, or a
            provider reports writing more than the buffer holds.
    """
    buffer = allocate(max(initial_size, 1))
    n = fill(buffer)
    if n < 0:
        required = -n
        logger.debug("%s: resizing buffer from %d to %d", what, len(buffer), required)
        buffer = allocate(required)
        n = fill(buffer)
        if n < 0:
            raise TokenizationError(
                f"{what}: buffer of {required} still too small (provider asked for {-n})"
            )
    if n > len(buffer):
        raise TokenizationError(f"{what}: provider wrote {n} items into a buffer of {len(buffer)}")
    return buffer, n


def _token_buffer(size: int) -> np.ndarray:
    return np.zeros(size, dtype=np.int32)


class Tokenizer:
    """Text/token conversion bound to one provider.

    Stateless apart from the provider reference, so it is safe to share
    between sessions using the same provider.
    """

    def __init__(self, provider: ModelProvider) -> None:
        self._provider = provider

    def encode(
        self,
        text: str,
        add_special: bool = True,
        parse_special: bool = False,
    ) -> list[int]:
        """Tokenize *text*.

        Args:
            text: Input text.
            add_special: Add the model's BOS/EOS style tokens.
            parse_special: Treat special-token text in *text* as special tokens.

        Returns:
            Token ids in order.

        Raises:
            TokenizationError: If *text* is not encodable as UTF-8 or the
                sizing retry fails.
        """
        try:
            raw = text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise TokenizationError(f"Malformed input text: {exc}") from exc

        buffer, n = size_then_fill(
            lambda buf: self._provider.tokenize(raw, buf, add_special, parse_special),
            _token_buffer,
            len(raw) + 2 * int(add_special),
            "tokenize",
        )
        return [int(t) for t in buffer[:n]]

    def decode(
        self,
        tokens: Sequence[int],
        remove_special: bool = False,
        unparse_special: bool = False,
    ) -> str:
        """Detokenize *tokens* jointly into text.

        Raises:
            TokenizationError: If the sizing retry fails or the provider
                produced invalid UTF-8.
        """
        tokens = list(tokens)
        buffer, n = size_then_fill(
            lambda buf: self._provider.detokenize(tokens, buf, remove_special, unparse_special),
            bytearray,
            max(_PIECE_BUFFER_SIZE, len(tokens)),
            "detokenize",
        )
        try:
            return bytes(buffer[:n]).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TokenizationError(f"Detokenized bytes are not valid UTF-8: {exc}") from exc

    def token_to_piece(self, token: int, special: bool = True) -> bytes:
        """Raw bytes of a single token's piece (may be a partial UTF-8 sequence)."""
        buffer, n = size_then_fill(
            lambda buf: self._provider.token_to_piece(token, buf, special),
            bytearray,
            _PIECE_BUFFER_SIZE,
            "token_to_piece",
        )
        return bytes(buffer[:n])

    def piece_text(self, token: int, special: bool = True) -> str:
        """A single token's piece as text, with invalid bytes replaced."""
        return self.token_to_piece(token, special).decode("utf-8", errors="replace")

    def stream_decoder(self, special: bool = True) -> PieceDecoder:
        """Return an incremental renderer for tokens emitted one at a time."""
        return PieceDecoder(self, special)


class PieceDecoder:
    """Renders tokens one by one, holding back incomplete UTF-8 sequences.

    A character split across two tokens is emitted with the second token;
    the first returns an empty string.
    """

    def __init__(self, tokenizer: Tokenizer, special: bool = True) -> None:
        self._tokenizer = tokenizer
        self._special = special
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, token: int) -> str:
        return self._decoder.decode(self._tokenizer.token_to_piece(token, self._special))

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)
