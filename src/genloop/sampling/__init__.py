"""Sampling subsystem for genloop.

An ordered chain of stages turns one logits row into one token:
penalties -> top-k -> top-p -> min-p -> temperature -> terminal draw.
"""

from genloop.sampling.base import SamplerStage, SelectionResult, TerminalStage
from genloop.sampling.candidates import Candidates, stable_softmax
from genloop.sampling.chain import CANONICAL_ORDER, SamplerChain, build_sampler_chain
from genloop.sampling.registry import StageRegistry
from genloop.sampling.stages import (
    MinPStage,
    PenaltyStage,
    TemperatureStage,
    TopKStage,
    TopPStage,
)
from genloop.sampling.terminal import DistributionSampler, GreedySampler

__all__ = [
    "CANONICAL_ORDER",
    "Candidates",
    "DistributionSampler",
    "GreedySampler",
    "MinPStage",
    "PenaltyStage",
    "SamplerChain",
    "SamplerStage",
    "SelectionResult",
    "StageRegistry",
    "TemperatureStage",
    "TerminalStage",
    "TopKStage",
    "TopPStage",
    "build_sampler_chain",
    "stable_softmax",
]
