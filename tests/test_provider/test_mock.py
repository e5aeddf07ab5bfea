"""Tests for the mock model provider and its decode context."""

from __future__ import annotations

import numpy as np
import pytest

from genloop.batch import Batch
from genloop.provider.base import ModelProvider
from genloop.provider.mock import (
    BOS_TOKEN,
    EOS_TOKEN,
    SPACE_MARKER,
    MockModelProvider,
    build_vocabulary,
)


class TestMockProvider:
    def test_vocabulary_layout(self, provider: MockModelProvider) -> None:
        vocab = build_vocabulary()
        assert vocab[:3] == ["<unk>", "<s>", "</s>"]
        assert vocab[3] == SPACE_MARKER
        assert provider.n_vocab == len(vocab)
        assert provider.token_id(" cat") == provider.token_id("▁cat")

    def test_is_end_of_generation(self, provider: MockModelProvider) -> None:
        assert provider.is_end_of_generation(EOS_TOKEN)
        assert not provider.is_end_of_generation(BOS_TOKEN)

    def test_tokenize_reports_required_size(self, provider: MockModelProvider) -> None:
        buffer = np.zeros(2, dtype=np.int32)
        n = provider.tokenize(b"the cat", buffer, True, False)
        assert n == -3
        assert list(buffer) == [0, 0]

    def test_unknown_characters(self, provider: MockModelProvider) -> None:
        buffer = np.zeros(8, dtype=np.int32)
        n = provider.tokenize("é".encode(), buffer, False, False)
        assert list(buffer[:n]) == [provider.token_id(SPACE_MARKER), 0]

    def test_encoder_flag(self) -> None:
        assert not MockModelProvider().has_encoder()
        provider = MockModelProvider(encoder=True)
        assert provider.has_encoder()
        assert provider.decoder_start_token() == BOS_TOKEN

    def test_base_provider_has_no_decoder_start(self) -> None:
        with pytest.raises(NotImplementedError):
            ModelProvider.decoder_start_token(MockModelProvider())


class TestMockDecodeContext:
    def test_script_rows(self, provider: MockModelProvider) -> None:
        context = provider.new_context(16)
        batch = Batch(4)
        batch.add_sequence([BOS_TOKEN, provider.token_id("▁cat")], 0)
        assert context.decode(batch) == 0
        row = context.logits(batch.logits_index)
        assert int(np.argmax(row)) == provider.token_id("▁Once")
        with pytest.raises(IndexError):
            context.logits(0)

    def test_full_cache_returns_status(self, provider: MockModelProvider) -> None:
        context = provider.new_context(1)
        batch = Batch(2)
        batch.add_sequence([BOS_TOKEN, BOS_TOKEN], 0)
        assert context.decode(batch) == 1
        assert context.history == []

    def test_injected_failure(self) -> None:
        provider = MockModelProvider(fail_on_decode=0, fail_status=-7)
        batch = Batch(1)
        batch.add(BOS_TOKEN, 0, (0,), True)
        assert provider.new_context(4).decode(batch) == -7

    def test_clear(self, provider: MockModelProvider) -> None:
        context = provider.new_context(8)
        batch = Batch(1)
        batch.add(BOS_TOKEN, 0, (0,), True)
        context.decode(batch)
        context.clear()
        assert context.history == []
        context.decode(batch)
        # Output numbering restarts with the cache.
        assert int(np.argmax(context.logits(0))) == provider.token_id("▁Once")
