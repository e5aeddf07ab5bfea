"""Deterministic mock model provider for tests and examples.

The mock has a small fixed vocabulary (special tokens, single printable ASCII
characters and a handful of SentencePiece style word pieces), tokenizes by
greedy longest match, and produces logits from a script, a fixed row or a
user callable. Failure injection covers decode errors and malformed rows.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import numpy as np

from genloop.provider.base import DecodeContext, ModelProvider

if TYPE_CHECKING:
    from genloop.batch import Batch, BatchEntry

SPACE_MARKER = "▁"

UNK_TOKEN = 0
BOS_TOKEN = 1
EOS_TOKEN = 2

_SPECIAL_PIECES: tuple[str, ...] = ("<unk>", "<s>", "</s>")

_WORD_PIECES: tuple[str, ...] = (
    "Write",
    "a",
    "short",
    "story",
    "about",
    "cat",
    "the",
    "The",
    "Once",
    "upon",
    "time",
    "there",
    "was",
    "little",
    "who",
    "loved",
    "to",
    "sleep",
    "in",
    "sun",
    "and",
    "dog",
    "sat",
    "on",
    "mat",
    "end",
)

# "Once upon a time there was a little cat who loved to sleep in the sun."
_DEFAULT_SCRIPT_PIECES: tuple[str, ...] = (
    "▁Once",
    "▁upon",
    "▁a",
    "▁time",
    "▁there",
    "▁was",
    "▁a",
    "▁little",
    "▁cat",
    "▁who",
    "▁loved",
    "▁to",
    "▁sleep",
    "▁in",
    "▁the",
    "▁sun",
    ".",
)

LogitsFn = Callable[[Sequence[int], int], np.ndarray]


def build_vocabulary() -> list[str]:
    """Return the mock vocabulary in id order."""
    vocab = list(_SPECIAL_PIECES)
    vocab.append(SPACE_MARKER)
    vocab.extend(chr(c) for c in range(33, 127))
    vocab.extend(SPACE_MARKER + word for word in _WORD_PIECES)
    return vocab


class MockModelProvider(ModelProvider):
    """Configurable mock provider with a fixed vocabulary.

    Logits precedence: ``logits_fn`` -> ``logits`` -> ``script``. With the
    default script, row *k* produced by a context peaks on the *k*-th script
    token and on EOS once the script runs out, so greedy decoding replays the
    script and stops.

    Args:
        logits: Fixed logits row returned for every requested position.
        logits_fn: ``fn(history, output_index) -> row`` where *history* is every
            token the context has decoded so far and *output_index* counts the
            rows the context has produced.
        script: Token ids the default logits favour, in order.
        peak: Logit given to the favoured token (all others get 0).
        eog_tokens: Ids treated as end of generation.
        encoder: Whether the mock behaves as an encoder-decoder model.
        fail_on_decode: 0-based decode call index that returns *fail_status*.
        fail_status: Status returned by the failing decode call.
    """

    def __init__(
        self,
        logits: np.ndarray | None = None,
        logits_fn: LogitsFn | None = None,
        script: Sequence[int] | None = None,
        peak: float = 10.0,
        eog_tokens: Sequence[int] = (EOS_TOKEN,),
        encoder: bool = False,
        fail_on_decode: int | None = None,
        fail_status: int = -1,
    ) -> None:
        self._vocab = build_vocabulary()
        self._piece_to_id = {piece: i for i, piece in enumerate(self._vocab)}
        self._max_piece_len = max(len(p) for p in self._vocab)
        self._special_re = re.compile(
            "("
            + "|".join(re.escape(p) for p in sorted(_SPECIAL_PIECES, key=len, reverse=True))
            + ")"
        )

        if logits is not None:
            logits = np.asarray(logits, dtype=np.float64)
        self._logits = logits
        self._logits_fn = logits_fn
        if script is None:
            script = [self._piece_to_id[p] for p in _DEFAULT_SCRIPT_PIECES]
        self._script = list(script)
        self._peak = peak
        self._eog_tokens = frozenset(eog_tokens)
        self._encoder = encoder
        self.fail_on_decode = fail_on_decode
        self.fail_status = fail_status
        self.contexts: list[MockDecodeContext] = []

    # --- vocabulary ---

    @property
    def n_vocab(self) -> int:
        return len(self._vocab)

    @property
    def vocabulary(self) -> list[str]:
        return list(self._vocab)

    def token_id(self, piece: str) -> int:
        """Return the id of *piece* (``' '`` may be written as the space marker)."""
        return self._piece_to_id[piece.replace(" ", SPACE_MARKER)]

    def is_end_of_generation(self, token: int) -> bool:
        return token in self._eog_tokens

    def has_encoder(self) -> bool:
        return self._encoder

    def decoder_start_token(self) -> int:
        return BOS_TOKEN

    # --- tokenization ---

    def _longest_match(self, normalized: str) -> list[int]:
        ids: list[int] = []
        i = 0
        n = len(normalized)
        while i < n:
            for length in range(min(self._max_piece_len, n - i), 0, -1):
                token = self._piece_to_id.get(normalized[i : i + length])
                if token is not None and token >= len(_SPECIAL_PIECES):
                    ids.append(token)
                    i += length
                    break
            else:
                ids.append(UNK_TOKEN)
                i += 1
        return ids

    def tokenize(
        self,
        text: bytes,
        buffer: np.ndarray,
        add_special: bool,
        parse_special: bool,
    ) -> int:
        s = text.decode("utf-8")
        ids: list[int] = [BOS_TOKEN] if add_special else []

        fragments = self._special_re.split(s) if parse_special else [s]
        first_text = True
        for fragment in fragments:
            if not fragment:
                continue
            if parse_special and fragment in _SPECIAL_PIECES:
                ids.append(self._piece_to_id[fragment])
                continue
            normalized = fragment.replace(" ", SPACE_MARKER)
            if first_text:
                # SentencePiece dummy prefix.
                normalized = SPACE_MARKER + normalized
                first_text = False
            ids.extend(self._longest_match(normalized))

        if len(ids) > len(buffer):
            return -len(ids)
        buffer[: len(ids)] = ids
        return len(ids)

    def _piece(self, token: int, special: bool) -> str:
        if not 0 <= token < len(self._vocab):
            raise ValueError(f"token {token} outside vocabulary of {len(self._vocab)}")
        piece = self._vocab[token]
        if token < len(_SPECIAL_PIECES):
            return piece if special else ""
        return piece.replace(SPACE_MARKER, " ")

    @staticmethod
    def _fill(buffer: bytearray, data: bytes) -> int:
        if len(data) > len(buffer):
            return -len(data)
        buffer[: len(data)] = data
        return len(data)

    def detokenize(
        self,
        tokens: Sequence[int],
        buffer: bytearray,
        remove_special: bool,
        unparse_special: bool,
    ) -> int:
        tokens = list(tokens)
        remove_space = True
        if remove_special and tokens and tokens[0] == BOS_TOKEN:
            # Dropping BOS keeps the first word's leading space.
            remove_space = False
            tokens = tokens[1:]

        pieces: list[str] = []
        for token in tokens:
            piece = self._piece(token, unparse_special)
            if remove_space and piece.startswith(" "):
                piece = piece[1:]
            remove_space = False
            pieces.append(piece)
        return self._fill(buffer, "".join(pieces).encode("utf-8"))

    def token_to_piece(self, token: int, buffer: bytearray, special: bool) -> int:
        return self._fill(buffer, self._piece(token, special).encode("utf-8"))

    # --- contexts ---

    def new_context(self, n_ctx: int) -> MockDecodeContext:
        context = MockDecodeContext(self, n_ctx)
        self.contexts.append(context)
        return context

    def compute_logits(self, history: Sequence[int], output_index: int) -> np.ndarray:
        """Produce the logits row for the context's *output_index*-th output."""
        if self._logits_fn is not None:
            return np.asarray(self._logits_fn(history, output_index), dtype=np.float64)
        if self._logits is not None:
            return self._logits.copy()
        row = np.zeros(self.n_vocab, dtype=np.float64)
        favoured = (
            self._script[output_index] if output_index < len(self._script) else EOS_TOKEN
        )
        row[favoured] = self._peak
        return row


class MockDecodeContext(DecodeContext):
    """KV-cache stand-in that records every call it receives.

    Attributes:
        decode_calls: Entries of each decode call, in order.
        encode_calls: Entries of each encode call, in order.
        history: Tokens decoded so far (the simulated KV cache contents).
        closed: Whether :meth:`close` was called.
    """

    def __init__(self, provider: MockModelProvider, n_ctx: int) -> None:
        self._provider = provider
        self._n_ctx = n_ctx
        self._outputs: dict[int, np.ndarray] = {}
        self._n_outputs = 0
        self.decode_calls: list[list[BatchEntry]] = []
        self.encode_calls: list[list[BatchEntry]] = []
        self.history: list[int] = []
        self.closed = False

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    def decode(self, batch: Batch) -> int:
        call_index = len(self.decode_calls)
        entries = list(batch.entries())
        self.decode_calls.append(entries)
        if self._provider.fail_on_decode == call_index:
            return self._provider.fail_status
        if len(self.history) + len(entries) > self._n_ctx:
            # No free KV slot.
            return 1

        self._outputs = {}
        for i, entry in enumerate(entries):
            self.history.append(entry.token)
            if entry.wants_logits:
                self._outputs[i] = self._provider.compute_logits(self.history, self._n_outputs)
                self._n_outputs += 1
        return 0

    def encode(self, batch: Batch) -> int:
        self.encode_calls.append(list(batch.entries()))
        return 0

    def logits(self, index: int) -> np.ndarray:
        if index not in self._outputs:
            raise IndexError(f"no logits were requested for batch entry {index}")
        return self._outputs[index]

    def clear(self) -> None:
        self.history.clear()
        self._outputs = {}
        self._n_outputs = 0

    def close(self) -> None:
        self.closed = True
