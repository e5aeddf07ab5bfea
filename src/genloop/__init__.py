"""genloop: an autoregressive token generation engine.

Drives a language model through prompt tokenization, batched decoding into a
bounded KV-cache context, a configurable sampler chain and detokenization,
stopping on end-of-generation, budget exhaustion, context overflow, decode
failure or interrupt.
"""

from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("genloop")
except PackageNotFoundError:
    __version__ = "0.0.0"

from genloop.batch import Batch, BatchEntry
from genloop.config import GenLoopConfig, resolve_config, validate_overrides
from genloop.context import ContextWindow
from genloop.exceptions import (
    BatchCapacityExceeded,
    ConfigValidationError,
    ContextOverflow,
    DecodeFailure,
    GenLoopError,
    SamplerMisconfiguration,
    TokenizationError,
)
from genloop.provider import DecodeContext, ModelProvider
from genloop.sampling import SamplerChain, build_sampler_chain
from genloop.session import (
    GenerationResult,
    GenerationState,
    Session,
    StepEvent,
    TerminationReason,
)
from genloop.tokenizer import Tokenizer

__all__ = [
    "Batch",
    "BatchCapacityExceeded",
    "BatchEntry",
    "ConfigValidationError",
    "ContextOverflow",
    "ContextWindow",
    "DecodeContext",
    "DecodeFailure",
    "GenLoopConfig",
    "GenLoopError",
    "GenerationResult",
    "GenerationState",
    "ModelProvider",
    "SamplerChain",
    "SamplerMisconfiguration",
    "Session",
    "StepEvent",
    "TerminationReason",
    "TokenizationError",
    "Tokenizer",
    "__version__",
    "build_sampler_chain",
    "resolve_config",
    "validate_overrides",
]
