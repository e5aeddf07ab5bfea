"""Registry for temperature strategy implementations.

Uses the same decorator pattern as the sampler stage registry. The
temperature stage asks it to build the strategy named by
``config.temperature_strategy``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from genloop.config import GenLoopConfig
    from genloop.temperature.base import TemperatureStrategy


class TemperatureStrategyRegistry:
    """Registry mapping string names to TemperatureStrategy classes."""

    _registry: ClassVar[dict[str, type[TemperatureStrategy]]] = {}

    @classmethod
    def register(
        cls, name: str
    ) -> Callable[[type[TemperatureStrategy]], type[TemperatureStrategy]]:
        """Decorator that registers a TemperatureStrategy class under *name*.

        Args:
            name: Identifier used in config ``temperature_strategy``.

        Returns:
            Decorator that registers the class and returns it unchanged.

        Raises:
            ValueError: If *name* is already registered.
        """

        def decorator(klass: type[TemperatureStrategy]) -> type[TemperatureStrategy]:
            if name in cls._registry:
                raise ValueError(f"Temperature strategy '{name}' is already registered")
            cls._registry[name] = klass
            return klass

        return decorator

    @classmethod
    def get(cls, name: str) -> type[TemperatureStrategy]:
        """Return the strategy class registered under *name*.

        Raises:
            KeyError: If *name* is not registered.
        """
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry)) or "(none)"
            raise KeyError(f"Unknown temperature strategy '{name}'. Available: {available}")
        return cls._registry[name]

    @classmethod
    def build(cls, config: GenLoopConfig) -> TemperatureStrategy:
        """Instantiate the strategy named by *config.temperature_strategy*."""
        return cls.get(config.temperature_strategy).from_config(config)

    @classmethod
    def list_registered(cls) -> list[str]:
        """Return sorted list of registered strategy names."""
        return sorted(cls._registry)
