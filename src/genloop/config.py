"""Configuration system for genloop.

Uses pydantic-settings for declarative, layered configuration:
init kwargs -> environment variables (GENLOOP_*) -> .env file -> field defaults.

Per-call overrides are applied via resolve_config() which creates a new
config instance without mutating the defaults. Infrastructure fields (the
context and batch geometry) are fixed for the lifetime of a session and are
protected from per-call override.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from genloop.exceptions import ConfigValidationError

# Fields fixed when a session creates its decode context and batch.
_INFRASTRUCTURE_FIELDS: frozenset[str] = frozenset({"n_ctx", "n_batch", "n_seq_max"})

# All known config field names (populated after class definition).
_ALL_FIELDS: frozenset[str] = frozenset()


class GenLoopConfig(BaseSettings):
    """Configuration for a generation session.

    Resolution order: init kwargs -> env vars (GENLOOP_*) -> .env file -> defaults.

    Fields are divided into two groups:
    - **Infrastructure**: Context size and batch geometry, NOT overridable
      per call.
    - **Generation parameters**: Budget, seed, tokenization flags, sampler
      stages and logging, overridable per call via ``Session.generate()``
      keyword arguments.
    """

    model_config = SettingsConfigDict(
        env_prefix="GENLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Infrastructure (NOT per-call overridable) ---

    n_ctx: int = Field(
        default=2048,
        gt=0,
        description="Context window capacity in KV-cache cells",
    )
    n_batch: int = Field(
        default=512,
        gt=0,
        description="Maximum number of entries submitted in one decode call",
    )
    n_seq_max: int = Field(
        default=1,
        gt=0,
        description="Maximum number of sequence ids attached to one batch entry",
    )

    # --- Generation (per-call overridable) ---

    n_predict: int = Field(
        default=32,
        ge=0,
        description="Maximum number of tokens to generate",
    )
    seed: int | None = Field(
        default=None,
        description="Seed for the terminal sampler RNG (None = fresh OS entropy)",
    )
    add_special: bool = Field(
        default=True,
        description="Add BOS/EOS style special tokens when tokenizing a text prompt",
    )
    parse_special: bool = Field(
        default=True,
        description="Recognise special-token text (e.g. '<s>') inside a text prompt",
    )

    # --- Sampler chain (per-call overridable) ---

    top_k: int = Field(
        default=40,
        description="Top-k filtering (<=0 disables)",
    )
    top_p: float = Field(
        default=0.95,
        description="Nucleus sampling threshold (>=1.0 disables)",
    )
    min_p: float = Field(
        default=0.05,
        description="Min-p filtering relative to the most probable token (<=0 disables)",
    )
    min_keep: int = Field(
        default=1,
        ge=1,
        description="Minimum number of candidates top-p and min-p must keep",
    )
    repeat_penalty: float = Field(
        default=1.0,
        description="Repetition penalty over recent tokens (1.0 disables)",
    )
    frequency_penalty: float = Field(
        default=0.0,
        description="Subtracted once per recent occurrence of a token (0.0 disables)",
    )
    presence_penalty: float = Field(
        default=0.0,
        description="Subtracted once if a token occurred recently (0.0 disables)",
    )
    penalty_last_n: int = Field(
        default=64,
        ge=-1,
        description="Window of accepted tokens the penalties consider (0 disables, -1 = n_ctx)",
    )
    sampler_terminal: str = Field(
        default="dist",
        description="Terminal selection stage: 'dist' or 'greedy'",
    )

    # --- Temperature (per-call overridable) ---

    temperature_strategy: str = Field(
        default="fixed",
        description="Temperature strategy: 'fixed' or 'edt'",
    )
    temperature: float = Field(
        default=0.8,
        description="Constant temperature for the fixed strategy (<=0 is greedy)",
    )
    edt_base_temp: float = Field(
        default=0.8,
        description="Base coefficient for EDT",
    )
    edt_exponent: float = Field(
        default=0.5,
        description="Power-law exponent for EDT",
    )
    edt_min_temp: float = Field(
        default=0.1,
        description="EDT temperature floor",
    )
    edt_max_temp: float = Field(
        default=2.0,
        description="EDT temperature ceiling",
    )

    # --- Logging (per-call overridable) ---

    log_level: str = Field(
        default="summary",
        description="Per-step logging verbosity: 'none', 'summary', 'full'",
    )
    diagnostic_mode: bool = Field(
        default=False,
        description="Store all step records in memory for analysis",
    )


_ALL_FIELDS = frozenset(GenLoopConfig.model_fields.keys())


def validate_overrides(overrides: dict[str, Any]) -> None:
    """Validate per-call override keys without creating a config.

    Args:
        overrides: Field name -> value mapping.

    Raises:
        ConfigValidationError: If any key is unknown or an infrastructure field.
    """
    for key in overrides:
        if key not in _ALL_FIELDS:
            raise ConfigValidationError(f"Unknown config field: '{key}'")
        if key in _INFRASTRUCTURE_FIELDS:
            raise ConfigValidationError(
                f"Field '{key}' is an infrastructure field and cannot be "
                f"overridden per call"
            )


def resolve_config(
    defaults: GenLoopConfig,
    overrides: dict[str, Any] | None,
) -> GenLoopConfig:
    """Create a new config instance merging defaults with per-call overrides.

    Args:
        defaults: The session's base configuration.
        overrides: Per-call field overrides.

    Returns:
        ``defaults`` itself when there is nothing to override, otherwise a
        new validated GenLoopConfig.

    Raises:
        ConfigValidationError: If any key is unknown or non-overridable.
    """
    if not overrides:
        return defaults

    validate_overrides(overrides)

    # model_copy(update=...) skips validation; model_validate coerces types.
    merged = defaults.model_dump()
    merged.update(overrides)
    return GenLoopConfig.model_validate(merged)
