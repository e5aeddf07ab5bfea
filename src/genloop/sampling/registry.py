"""Registry for sampler stage implementations.

Uses a decorator pattern for registration so that built-in and third-party
stages register themselves at import time. :func:`genloop.sampling.chain.build_sampler_chain`
looks stages up by name in the canonical pipeline order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from genloop.config import GenLoopConfig
    from genloop.sampling.base import SamplerStage


class StageRegistry:
    """Registry mapping string names to SamplerStage classes."""

    _registry: ClassVar[dict[str, type[SamplerStage]]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[SamplerStage]], type[SamplerStage]]:
        """Decorator that registers a SamplerStage class under *name*.

        Args:
            name: Identifier used in the chain order and ``sampler_terminal``.

        Returns:
            Decorator that registers the class and returns it unchanged.

        Raises:
            ValueError: If *name* is already registered.
        """

        def decorator(klass: type[SamplerStage]) -> type[SamplerStage]:
            if name in cls._registry:
                raise ValueError(f"Sampler stage '{name}' is already registered")
            klass.name = name
            cls._registry[name] = klass
            return klass

        return decorator

    @classmethod
    def get(cls, name: str) -> type[SamplerStage]:
        """Return the stage class registered under *name*.

        Raises:
            KeyError: If *name* is not registered.
        """
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry)) or "(none)"
            raise KeyError(f"Unknown sampler stage '{name}'. Available: {available}")
        return cls._registry[name]

    @classmethod
    def build(cls, name: str, config: GenLoopConfig) -> SamplerStage | None:
        """Instantiate stage *name* from *config*; ``None`` if the config disables it."""
        return cls.get(name).from_config(config)

    @classmethod
    def list_registered(cls) -> list[str]:
        """Return sorted list of registered stage names."""
        return sorted(cls._registry)
