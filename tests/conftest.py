"""Shared pytest fixtures for genloop tests.

Provides reusable configuration objects, mock model providers, and sample
logit arrays that are used across multiple test modules.
"""

from __future__ import annotations

import numpy as np
import pytest

from genloop.config import GenLoopConfig
from genloop.provider.mock import MockModelProvider


def _make_config(**overrides: object) -> GenLoopConfig:
    """Build a config isolated from the environment's .env file."""
    return GenLoopConfig(_env_file=None, **overrides)  # type: ignore[call-arg]


@pytest.fixture()
def default_config() -> GenLoopConfig:
    """Config with all default values."""
    return _make_config()


@pytest.fixture()
def greedy_config() -> GenLoopConfig:
    """Config that always picks the most probable token, no filtering."""
    return _make_config(
        sampler_terminal="greedy",
        top_k=0,
        top_p=1.0,
        min_p=0.0,
        log_level="none",
    )


@pytest.fixture()
def diagnostic_config() -> GenLoopConfig:
    """Config with diagnostic mode and full logging enabled."""
    return _make_config(log_level="full", diagnostic_mode=True)


@pytest.fixture()
def provider() -> MockModelProvider:
    """Mock provider replaying the default script and then EOS."""
    return MockModelProvider()


@pytest.fixture()
def sample_logits_peaked() -> np.ndarray:
    """Logits with one dominant token (index 0). Vocab size = 100."""
    logits = np.zeros(100, dtype=np.float64)
    logits[0] = 10.0
    return logits


@pytest.fixture()
def sample_logits_uniform() -> np.ndarray:
    """Equal logits for 100 tokens."""
    return np.zeros(100, dtype=np.float64)


@pytest.fixture()
def sample_logits_random() -> np.ndarray:
    """Random logits for a small vocabulary, fixed seed."""
    rng = np.random.default_rng(seed=12345)
    return rng.standard_normal(100).astype(np.float64)
