"""Tests for the FixedTemperatureStrategy."""

from __future__ import annotations

import math

import numpy as np
import pytest

from genloop.config import GenLoopConfig
from genloop.temperature.base import TemperatureResult, compute_shannon_entropy
from genloop.temperature.fixed import FixedTemperatureStrategy
from genloop.temperature.registry import TemperatureStrategyRegistry


@pytest.fixture()
def strategy() -> FixedTemperatureStrategy:
    """FixedTemperatureStrategy at the default temperature."""
    return FixedTemperatureStrategy(0.8)


class TestFixedTemperatureStrategy:
    """Tests for FixedTemperatureStrategy."""

    def test_returns_fixed_temperature(self, strategy: FixedTemperatureStrategy) -> None:
        """Should return the configured temperature regardless of logits."""
        result = strategy.compute_temperature(np.array([5.0, 4.0, 3.0, 2.0, 1.0]))
        assert result.temperature == 0.8

    def test_returns_fixed_for_uniform_logits(self, strategy: FixedTemperatureStrategy) -> None:
        result = strategy.compute_temperature(np.ones(5))
        assert result.temperature == 0.8

    def test_shannon_entropy_uniform(self, strategy: FixedTemperatureStrategy) -> None:
        """Uniform distribution should have max entropy = ln(N)."""
        result = strategy.compute_temperature(np.zeros(10))
        assert abs(result.shannon_entropy - math.log(10)) < 1e-6

    def test_shannon_entropy_peaked(self, strategy: FixedTemperatureStrategy) -> None:
        result = strategy.compute_temperature(np.array([100.0, -100.0, -100.0, -100.0]))
        assert result.shannon_entropy < 0.01

    def test_zero_temperature_passes_through(self) -> None:
        """A zero temperature is reported as-is; the stage turns it into greedy."""
        result = FixedTemperatureStrategy(0.0).compute_temperature(np.array([1.0, 2.0]))
        assert result.temperature == 0.0

    def test_from_config(self) -> None:
        config = GenLoopConfig(_env_file=None, temperature=1.5)  # type: ignore[call-arg]
        strategy = FixedTemperatureStrategy.from_config(config)
        assert strategy.temperature == 1.5

    def test_diagnostics_contain_strategy(self, strategy: FixedTemperatureStrategy) -> None:
        result = strategy.compute_temperature(np.array([1.0, 2.0]))
        assert result.diagnostics["strategy"] == "fixed"

    def test_result_is_frozen(self, strategy: FixedTemperatureStrategy) -> None:
        result = strategy.compute_temperature(np.array([1.0, 2.0]))
        with pytest.raises(AttributeError):
            result.temperature = 99.0  # type: ignore[misc]

    def test_registered(self) -> None:
        """FixedTemperatureStrategy should be in the registry as 'fixed'."""
        assert TemperatureStrategyRegistry.get("fixed") is FixedTemperatureStrategy


class TestTemperatureStrategyRegistry:
    """Tests for the TemperatureStrategyRegistry."""

    def test_unknown_strategy_raises(self) -> None:
        with pytest.raises(KeyError, match="Unknown temperature strategy"):
            TemperatureStrategyRegistry.get("nonexistent_strategy")

    def test_list_registered(self) -> None:
        names = TemperatureStrategyRegistry.list_registered()
        assert "fixed" in names
        assert "edt" in names
        assert names == sorted(names)

    def test_build_uses_config(self) -> None:
        config = GenLoopConfig(_env_file=None, temperature=0.3)  # type: ignore[call-arg]
        strategy = TemperatureStrategyRegistry.build(config)
        assert isinstance(strategy, FixedTemperatureStrategy)
        assert strategy.temperature == 0.3


class TestComputeShannonEntropy:
    """Tests for the compute_shannon_entropy utility."""

    def test_uniform_distribution(self) -> None:
        h = compute_shannon_entropy(np.zeros(8))
        assert abs(h - math.log(8)) < 1e-6

    def test_two_equal_tokens(self) -> None:
        h = compute_shannon_entropy(np.array([5.0, 5.0]))
        assert abs(h - math.log(2)) < 1e-6

    def test_masked_logits_ignored(self) -> None:
        """-inf entries contribute nothing."""
        h = compute_shannon_entropy(np.array([0.0, 0.0, -np.inf]))
        assert abs(h - math.log(2)) < 1e-6

    def test_all_masked(self) -> None:
        assert compute_shannon_entropy(np.array([-np.inf, -np.inf])) == 0.0

    def test_single_logit(self) -> None:
        assert compute_shannon_entropy(np.array([42.0])) == 0.0

    def test_result_is_frozen(self) -> None:
        result = TemperatureResult(temperature=0.7, shannon_entropy=1.5, diagnostics={})
        with pytest.raises(AttributeError):
            result.temperature = 0.9  # type: ignore[misc]
