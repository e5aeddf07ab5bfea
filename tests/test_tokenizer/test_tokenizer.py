"""Tests for the Tokenizer adapter and the two-phase sizing protocol."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pytest

from genloop.exceptions import TokenizationError
from genloop.provider.mock import BOS_TOKEN, EOS_TOKEN, MockModelProvider
from genloop.tokenizer import Tokenizer, size_then_fill

PROMPT = "Write a short story about a cat."


class CountingProvider(MockModelProvider):
    """Mock provider that records the buffer size of every sizing call."""

    def __init__(self) -> None:
        super().__init__()
        self.tokenize_sizes: list[int] = []
        self.detokenize_sizes: list[int] = []

    def tokenize(
        self, text: bytes, buffer: np.ndarray, add_special: bool, parse_special: bool
    ) -> int:
        self.tokenize_sizes.append(len(buffer))
        return super().tokenize(text, buffer, add_special, parse_special)

    def detokenize(
        self,
        tokens: Sequence[int],
        buffer: bytearray,
        remove_special: bool,
        unparse_special: bool,
    ) -> int:
        self.detokenize_sizes.append(len(buffer))
        return super().detokenize(tokens, buffer, remove_special, unparse_special)


class GreedyBufferProvider(MockModelProvider):
    """Provider that always asks for a bigger buffer than it was given."""

    def tokenize(
        self, text: bytes, buffer: np.ndarray, add_special: bool, parse_special: bool
    ) -> int:
        return -(len(buffer) + 1)


class SplitCharProvider(MockModelProvider):
    """Provider whose tokens 200 and 201 carry the two bytes of 'é'."""

    _PIECES = {200: b"\xc3", 201: b"\xa9"}

    def token_to_piece(self, token: int, buffer: bytearray, special: bool) -> int:
        if token in self._PIECES:
            return self._fill(buffer, self._PIECES[token])
        return super().token_to_piece(token, buffer, special)


@pytest.fixture()
def tokenizer(provider: MockModelProvider) -> Tokenizer:
    return Tokenizer(provider)


class TestEncode:
    """Tests for text -> tokens."""

    def test_prompt_tokens(self, provider: MockModelProvider, tokenizer: Tokenizer) -> None:
        tokens = tokenizer.encode(PROMPT, add_special=True, parse_special=True)
        expected = [BOS_TOKEN] + [
            provider.token_id(p)
            for p in ("▁Write", "▁a", "▁short", "▁story", "▁about", "▁a", "▁cat", ".")
        ]
        assert tokens == expected

    def test_add_special_false_has_no_bos(self, tokenizer: Tokenizer) -> None:
        tokens = tokenizer.encode(PROMPT, add_special=False)
        assert BOS_TOKEN not in tokens

    def test_parse_special(self, tokenizer: Tokenizer) -> None:
        """Special-token text becomes the special id only when parse_special is set."""
        parsed = tokenizer.encode("</s>", add_special=False, parse_special=True)
        assert parsed == [EOS_TOKEN]
        literal = tokenizer.encode("</s>", add_special=False, parse_special=False)
        assert EOS_TOKEN not in literal
        assert len(literal) > 1

    def test_empty_text(self, tokenizer: Tokenizer) -> None:
        assert tokenizer.encode("", add_special=False) == []
        assert tokenizer.encode("", add_special=True) == [BOS_TOKEN]

    def test_malformed_text_raises(self, tokenizer: Tokenizer) -> None:
        with pytest.raises(TokenizationError, match="Malformed"):
            tokenizer.encode("bad \ud800 surrogate")

    def test_retry_failure_raises(self) -> None:
        tokenizer = Tokenizer(GreedyBufferProvider())
        with pytest.raises(TokenizationError, match="still too small"):
            tokenizer.encode(PROMPT)


class TestDecode:
    """Tests for tokens -> text."""

    def test_round_trip(self, tokenizer: Tokenizer) -> None:
        text = "Once upon a time there was a little cat."
        assert tokenizer.decode(tokenizer.encode(text, add_special=False)) == text

    def test_round_trip_with_bos_keeps_leading_space(self, tokenizer: Tokenizer) -> None:
        """A leading BOS renders empty, so the dummy-prefix space survives."""
        decoded = tokenizer.decode(tokenizer.encode(PROMPT, add_special=True))
        assert decoded == " " + PROMPT

    def test_remove_special_drops_bos(self, tokenizer: Tokenizer) -> None:
        tokens = tokenizer.encode(PROMPT, add_special=True)
        assert tokenizer.decode(tokens, remove_special=True) == " " + PROMPT

    def test_unparse_special_renders_text(self, tokenizer: Tokenizer) -> None:
        tokens = tokenizer.encode("cat", add_special=True)
        assert tokenizer.decode(tokens, unparse_special=True).startswith("<s>")

    def test_resizes_once_for_long_output(self) -> None:
        provider = CountingProvider()
        tokenizer = Tokenizer(provider)
        text = "Once upon a time there was a little dog who sat on the mat."
        tokens = tokenizer.encode(text, add_special=False)
        assert tokenizer.decode(tokens) == text
        assert len(provider.detokenize_sizes) == 2
        assert provider.detokenize_sizes[1] == len(text.encode("utf-8"))

    def test_tokenize_needs_no_resize(self) -> None:
        provider = CountingProvider()
        Tokenizer(provider).encode(PROMPT)
        assert len(provider.tokenize_sizes) == 1


def _word_sequence(seed: int) -> list[str]:
    """Random word pieces, with sentence punctuation mixed in after words."""
    rng = np.random.default_rng(seed)
    words = [p for p in MockModelProvider().vocabulary if p.startswith("▁") and len(p) > 1]
    pieces: list[str] = []
    for _ in range(int(rng.integers(1, 9))):
        pieces.append(words[int(rng.integers(len(words)))])
        if rng.random() < 0.25:
            pieces.append(str(rng.choice([".", ",", "!", "?"])))
    return pieces


class TestTokenRoundTrip:
    """encode(decode(T), add_special=False) == T for sequences starting with a spaced piece."""

    @pytest.mark.parametrize("seed", range(25))
    def test_random_word_sequences(self, provider: MockModelProvider, seed: int) -> None:
        tokenizer = Tokenizer(provider)
        tokens = [provider.token_id(p) for p in _word_sequence(seed)]
        assert tokenizer.encode(tokenizer.decode(tokens), add_special=False) == tokens

    @pytest.mark.parametrize(
        "pieces",
        [
            ("▁Once", "▁upon", "▁a", "▁time"),
            ("▁cat", "▁", "▁dog"),
            ("▁the", "x", "y", "z"),
            ("▁The", "▁end", "."),
            ("▁a",),
        ],
    )
    def test_fixed_sequences(self, provider: MockModelProvider, pieces: tuple[str, ...]) -> None:
        tokenizer = Tokenizer(provider)
        tokens = [provider.token_id(p) for p in pieces]
        assert tokenizer.encode(tokenizer.decode(tokens), add_special=False) == tokens

    def test_unspaced_first_piece_gains_space_token(self, provider: MockModelProvider) -> None:
        """Without a leading space piece the dummy prefix adds a bare space token."""
        tokenizer = Tokenizer(provider)
        tokens = [provider.token_id(p) for p in ("C", "a", "t")]
        assert tokenizer.decode(tokens) == "Cat"
        assert tokenizer.encode("Cat", add_special=False) == [provider.token_id("▁")] + tokens

    def test_stripped_concatenation_reencodes(self, provider: MockModelProvider) -> None:
        tokenizer = Tokenizer(provider)
        tokens = [provider.token_id(p) for p in ("▁Once", "▁upon", "▁a")]
        joined = "".join(tokenizer.piece_text(t) for t in tokens)
        assert joined == " Once upon a"
        assert tokenizer.decode(tokens) == "Once upon a"
        assert tokenizer.encode(joined.lstrip(" "), add_special=False) == tokens


class TestPieces:
    """Tests for per-token rendering and the whitespace edge."""

    def test_piece_keeps_leading_space(
        self, provider: MockModelProvider, tokenizer: Tokenizer
    ) -> None:
        assert tokenizer.piece_text(provider.token_id("▁cat")) == " cat"

    def test_concatenated_pieces_differ_from_joint_decode(self, tokenizer: Tokenizer) -> None:
        tokens = tokenizer.encode("the cat", add_special=False)
        joined = "".join(tokenizer.piece_text(t) for t in tokens)
        assert joined == " the cat"
        assert tokenizer.decode(tokens) == "the cat"

    def test_special_piece(self, tokenizer: Tokenizer) -> None:
        assert tokenizer.token_to_piece(EOS_TOKEN, special=True) == b"</s>"
        assert tokenizer.token_to_piece(EOS_TOKEN, special=False) == b""

    def test_stream_decoder_holds_partial_character(self) -> None:
        tokenizer = Tokenizer(SplitCharProvider())
        decoder = tokenizer.stream_decoder()
        assert decoder.feed(200) == ""
        assert decoder.feed(201) == "é"
        assert decoder.flush() == ""

    def test_stream_decoder_flush_replaces_dangling_bytes(self) -> None:
        tokenizer = Tokenizer(SplitCharProvider())
        decoder = tokenizer.stream_decoder()
        decoder.feed(200)
        assert decoder.flush() == "�"


class TestSizeThenFill:
    """Tests for the resize-and-retry-once helper."""

    def test_first_call_fits(self) -> None:
        buffer, n = size_then_fill(lambda buf: 3, bytearray, 8, "op")
        assert n == 3
        assert len(buffer) == 8

    def test_retries_with_required_size(self) -> None:
        sizes: list[int] = []

        def fill(buf: bytearray) -> int:
            sizes.append(len(buf))
            return -20 if len(buf) < 20 else 20

        buffer, n = size_then_fill(fill, bytearray, 4, "op")
        assert sizes == [4, 20]
        assert n == 20
        assert len(buffer) == 20

    def test_second_failure_raises(self) -> None:
        calls: list[int] = []

        def fill(buf: bytearray) -> int:
            calls.append(len(buf))
            return -(len(buf) + 1)

        with pytest.raises(TokenizationError):
            size_then_fill(fill, bytearray, 4, "op")
        assert len(calls) == 2

    def test_overlong_write_raises(self) -> None:
        with pytest.raises(TokenizationError, match="wrote"):
            size_then_fill(lambda buf: len(buf) + 5, bytearray, 4, "op")

    def test_zero_initial_size_allocates_one(self) -> None:
        buffer, n = size_then_fill(lambda buf: 0, bytearray, 0, "op")
        assert len(buffer) == 1
        assert n == 0
