"""Generation session: the autoregressive decode/sample loop.

A :class:`Session` exclusively owns one decode context (KV cache), its
:class:`~genloop.context.ContextWindow`, one reusable :class:`~genloop.batch.Batch`
and a :class:`~genloop.sampling.chain.SamplerChain`. Each ``generate`` call
runs the state machine::

    Init -> PromptDecode -> GenerateStep* -> Terminated

PromptDecode submits the prompt (logits for the last prompt token only) and
the first token is sampled from those logits. Each GenerateStep first checks
for an interrupt and the remaining budget, then decodes the single pending
token, samples, and either stops on an end-of-generation token or emits the
token and queues it as the next pending batch.

Context overflow and decode failure end the call with a termination reason
and whatever was generated; they are never raised to the caller. Setup
problems (tokenization, sampler or config errors) raise immediately, before
the model is touched.

The KV cache accumulates across calls. A token emitted last in one call is
never decoded by that call, so the next call submits it ahead of its prompt.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from genloop.batch import Batch
from genloop.config import GenLoopConfig, resolve_config
from genloop.context import ContextWindow
from genloop.exceptions import (
    BatchCapacityExceeded,
    ContextOverflow,
    DecodeFailure,
    GenLoopError,
    TokenizationError,
)
from genloop.logging.logger import GenerationLogger
from genloop.logging.types import StepRecord
from genloop.sampling.chain import SamplerChain, build_sampler_chain
from genloop.tokenizer import Tokenizer

if TYPE_CHECKING:
    from genloop.provider.base import ModelProvider

logger = logging.getLogger("genloop")

_SEQUENCE_IDS = (0,)

# Overrides that change how the sampler chain is built.
_SAMPLER_FIELDS: frozenset[str] = frozenset(
    {
        "seed",
        "top_k",
        "top_p",
        "min_p",
        "min_keep",
        "repeat_penalty",
        "frequency_penalty",
        "presence_penalty",
        "penalty_last_n",
        "sampler_terminal",
        "temperature_strategy",
        "temperature",
        "edt_base_temp",
        "edt_exponent",
        "edt_min_temp",
        "edt_max_temp",
    }
)
_LOGGING_FIELDS: frozenset[str] = frozenset({"log_level", "diagnostic_mode"})


class TerminationReason(enum.Enum):
    """Why a generate call stopped."""

    END_OF_GENERATION = "end_of_generation"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CONTEXT_OVERFLOW = "context_overflow"
    DECODE_FAILURE = "decode_failure"
    INTERRUPTED = "interrupted"


@dataclass(slots=True)
class GenerationState:
    """Mutable state of the running generate call.

    Lowering ``remaining_budget`` to zero from outside stops the loop at the
    top of the next step.
    """

    prompt_tokens: list[int]
    generated_tokens: list[int] = field(default_factory=list)
    remaining_budget: int = 0
    last_token: int | None = None


@dataclass(frozen=True, slots=True)
class StepEvent:
    """One emitted token, as yielded by :meth:`Session.stream`.

    Attributes:
        token_id: The emitted token.
        position: Position the token will occupy when decoded.
        piece: Newly renderable text (may be empty while a multi-byte
            character is incomplete).
        prob: Probability of the token after filtering.
    """

    token_id: int
    position: int
    piece: str
    prob: float


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of a generate call: tokens plus the termination reason.

    Attributes:
        tokens: Generated tokens in sampling order (never the EOG token).
        reason: Why generation stopped.
        prompt_tokens: The prompt as submitted by the caller.
        n_decode: Decode calls made (prompt chunks included).
        prompt_ms: Time spent in PromptDecode.
        generate_ms: Time spent in the GenerateStep loop.
        decode_status: Failing status when ``reason`` is DECODE_FAILURE.
        text: Jointly detokenized ``tokens`` (set by :meth:`Session.generate`).
    """

    tokens: list[int]
    reason: TerminationReason
    prompt_tokens: list[int]
    n_decode: int
    prompt_ms: float
    generate_ms: float
    decode_status: int | None = None
    text: str | None = None

    @property
    def tokens_per_second(self) -> float:
        if self.generate_ms <= 0:
            return 0.0
        return len(self.tokens) / (self.generate_ms / 1000.0)


def _elapsed_ms(start_ns: int) -> float:
    return (time.perf_counter_ns() - start_ns) / 1_000_000.0


class Session:
    """One exclusive generation session against a shared provider.

    Args:
        provider: Model provider; only read from, may be shared.
        config: Session configuration. Defaults to ``GenLoopConfig()``.
        sampler: Explicit sampler chain. Built from *config* when omitted.

    Raises:
        SamplerMisconfiguration: If the sampler chain is invalid.
        GenLoopError: If *sampler* is bound to another session.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: GenLoopConfig | None = None,
        sampler: SamplerChain | None = None,
    ) -> None:
        self._provider = provider
        self._config = config if config is not None else GenLoopConfig()
        self._tokenizer = Tokenizer(provider)

        # Sampler first: a misconfigured chain fails before a context exists.
        self._owns_sampler = sampler is None
        self._sampler = sampler if sampler is not None else build_sampler_chain(self._config)
        self._sampler.bind(self)

        self._context = provider.new_context(self._config.n_ctx)
        self._window = ContextWindow(self._context.n_ctx)
        self._batch = Batch(self._config.n_batch, self._config.n_seq_max)
        self._logger = GenerationLogger(self._config)

        self._state: GenerationState | None = None
        self._last_result: GenerationResult | None = None
        self._carry: int | None = None
        self._interrupted = False
        self._active = False
        self._closed = False

        logger.info(
            "Session created: n_ctx=%d, n_batch=%d, n_vocab=%d, sampler=%r",
            self._window.capacity,
            self._batch.capacity,
            provider.n_vocab,
            self._sampler,
        )

    # --- accessors ---

    @property
    def config(self) -> GenLoopConfig:
        return self._config

    @property
    def tokenizer(self) -> Tokenizer:
        return self._tokenizer

    @property
    def sampler(self) -> SamplerChain:
        return self._sampler

    @property
    def window(self) -> ContextWindow:
        return self._window

    @property
    def state(self) -> GenerationState | None:
        """State of the current (or most recent) generate call."""
        return self._state

    @property
    def last_result(self) -> GenerationResult | None:
        return self._last_result

    @property
    def generation_logger(self) -> GenerationLogger:
        return self._logger

    @property
    def closed(self) -> bool:
        return self._closed

    # --- lifecycle ---

    def interrupt(self) -> None:
        """Ask the running generate call to stop at the top of its next step."""
        self._interrupted = True

    def reset(self) -> None:
        """Start over as a fresh session: clear the KV cache and sampler state."""
        self._ensure_usable()
        self._context.clear()
        self._window.reset()
        self._sampler.reset()
        self._carry = None
        self._state = None
        logger.debug("Session reset")

    def close(self) -> None:
        """Release the decode context. Further generate calls raise."""
        if self._closed:
            return
        self._closed = True
        self._sampler.release(self)
        self._context.close()
        self._state = None
        logger.debug("Session closed")

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_usable(self) -> None:
        if self._closed:
            raise GenLoopError("Session is closed")
        if self._active:
            raise GenLoopError("A generation is already running in this session")

    # --- generation ---

    def generate(
        self,
        prompt: str | Sequence[int],
        n_predict: int | None = None,
        **overrides: Any,
    ) -> GenerationResult:
        """Run a full generate call and return tokens, reason and text.

        Args:
            prompt: Text (tokenized with the configured special-token flags)
                or token ids.
            n_predict: Token budget; defaults to ``config.n_predict``.
            **overrides: Per-call config overrides (generation fields only).

        Returns:
            GenerationResult with ``text`` rendered by the tokenizer adapter.

        Raises:
            TokenizationError: If the prompt cannot be tokenized or is empty.
            ConfigValidationError: If an override is unknown or not overridable.
            SamplerMisconfiguration: If overrides produce an invalid chain.
        """
        for _ in self.stream(prompt, n_predict, **overrides):
            pass
        result = self._last_result
        if result is None:
            raise GenLoopError("Generation ended without a result")

        try:
            text = self._tokenizer.decode(result.tokens)
        except TokenizationError:
            logger.warning("Could not render %d generated tokens as text", len(result.tokens))
            text = None
        result = dataclasses.replace(result, text=text)
        self._last_result = result
        return result

    def stream(
        self,
        prompt: str | Sequence[int],
        n_predict: int | None = None,
        **overrides: Any,
    ) -> Iterator[StepEvent]:
        """Validate the call, then return an iterator over emitted tokens.

        All setup errors raise here, before iteration starts. When the
        iterator is exhausted (or closed early) :attr:`last_result` holds the
        GenerationResult; closing early counts as an interrupt.
        """
        self._ensure_usable()
        config = resolve_config(self._config, overrides)
        budget = config.n_predict if n_predict is None else n_predict
        if budget < 0:
            raise ValueError(f"n_predict must be >= 0, got {budget}")

        prompt_tokens = self._prompt_tokens(prompt, config)
        if self._provider.has_encoder() and len(prompt_tokens) > self._batch.capacity:
            raise BatchCapacityExceeded(
                f"Encoder input of {len(prompt_tokens)} tokens exceeds n_batch "
                f"{self._batch.capacity}"
            )

        changed = set(overrides)
        sampler = self._sampler
        if changed & _SAMPLER_FIELDS:
            if not self._owns_sampler:
                raise GenLoopError("Sampler overrides need a session-built sampler chain")
            sampler = build_sampler_chain(config)
            sampler.bind(self)
        gen_logger = GenerationLogger(config) if changed & _LOGGING_FIELDS else self._logger

        self._interrupted = False
        state = GenerationState(prompt_tokens=prompt_tokens, remaining_budget=budget)
        return self._run(state, sampler, gen_logger)

    def _prompt_tokens(self, prompt: str | Sequence[int], config: GenLoopConfig) -> list[int]:
        if isinstance(prompt, str):
            tokens = self._tokenizer.encode(
                prompt,
                add_special=config.add_special,
                parse_special=config.parse_special,
            )
        else:
            tokens = [int(t) for t in prompt]
            n_vocab = self._provider.n_vocab
            bad = [t for t in tokens if not 0 <= t < n_vocab]
            if bad:
                raise TokenizationError(f"Prompt tokens outside vocabulary of {n_vocab}: {bad[:5]}")
        if not tokens:
            raise TokenizationError("Prompt produced no tokens")
        return tokens

    def _run(
        self,
        state: GenerationState,
        sampler: SamplerChain,
        gen_logger: GenerationLogger,
    ) -> Iterator[StepEvent]:
        if self._active:
            raise GenLoopError("A generation is already running in this session")
        self._active = True
        self._state = state

        decoder = self._tokenizer.stream_decoder()
        reason: TerminationReason | None = None
        decode_status: int | None = None
        n_decode = 0
        t_start = time.perf_counter_ns()
        prompt_ms = 0.0
        t_loop = t_start

        try:
            # --- PromptDecode ---
            try:
                n_decode += self._decode_prompt(state.prompt_tokens)
            except ContextOverflow as exc:
                logger.warning("Prompt does not fit: %s", exc)
                reason = TerminationReason.CONTEXT_OVERFLOW
            except DecodeFailure as exc:
                logger.error("Prompt decode failed: %s", exc)
                reason = TerminationReason.DECODE_FAILURE
                decode_status = exc.status
            prompt_ms = _elapsed_ms(t_start)
            t_loop = time.perf_counter_ns()

            # --- GenerateStep* ---
            pending = False
            step = 0
            while reason is None:
                if self._interrupted:
                    reason = TerminationReason.INTERRUPTED
                    break
                if state.remaining_budget <= 0:
                    reason = TerminationReason.BUDGET_EXHAUSTED
                    break

                t_step = time.perf_counter_ns()
                try:
                    if pending:
                        self._decode_batch()
                        n_decode += 1
                        pending = False
                        self._carry = None
                    decode_ms = _elapsed_ms(t_step)
                    logits = self._read_logits()
                except ContextOverflow as exc:
                    logger.warning("Stopping generation: %s", exc)
                    reason = TerminationReason.CONTEXT_OVERFLOW
                    break
                except DecodeFailure as exc:
                    logger.error("Stopping generation: %s", exc)
                    reason = TerminationReason.DECODE_FAILURE
                    decode_status = exc.status
                    break

                t_sample = time.perf_counter_ns()
                selection = sampler.sample(logits)
                sample_ms = _elapsed_ms(t_sample)

                token = selection.token_id
                end_of_generation = self._provider.is_end_of_generation(token)
                gen_logger.log_step(
                    StepRecord(
                        timestamp_ns=t_step,
                        decode_ms=decode_ms,
                        sample_ms=sample_ms,
                        step=step,
                        position=self._batch.entry(self._batch.logits_index).position,
                        used_cells=self._window.used_cells,
                        token_id=token,
                        token_rank=selection.token_rank,
                        token_prob=selection.token_prob,
                        num_candidates=selection.num_candidates,
                        temperature_used=float(selection.diagnostics.get("temperature", np.nan)),
                        end_of_generation=end_of_generation,
                    )
                )
                if end_of_generation:
                    reason = TerminationReason.END_OF_GENERATION
                    break

                state.generated_tokens.append(token)
                state.last_token = token
                sampler.accept(token)
                if sampler is not self._sampler:
                    # The session chain still sees every emitted token.
                    self._sampler.accept(token)
                state.remaining_budget -= 1

                position = self._window.used_cells
                self._batch.clear()
                self._batch.add(token, position, _SEQUENCE_IDS, True)
                pending = True
                self._carry = token
                step += 1
                yield StepEvent(
                    token_id=token,
                    position=position,
                    piece=decoder.feed(token),
                    prob=selection.token_prob,
                )
        finally:
            if reason is None:
                # Iterator closed by the consumer.
                reason = TerminationReason.INTERRUPTED
            self._active = False
            if sampler is not self._sampler:
                sampler.release(self)
            generate_ms = _elapsed_ms(t_loop)
            self._last_result = GenerationResult(
                tokens=list(state.generated_tokens),
                reason=reason,
                prompt_tokens=list(state.prompt_tokens),
                n_decode=n_decode,
                prompt_ms=prompt_ms,
                generate_ms=generate_ms,
                decode_status=decode_status,
            )
            logger.info(
                "Generation finished: reason=%s, prompt=%d tokens, generated=%d tokens, "
                "decode_calls=%d, used_cells=%d/%d",
                reason.value,
                len(state.prompt_tokens),
                len(state.generated_tokens),
                n_decode,
                self._window.used_cells,
                self._window.capacity,
            )

    def _decode_prompt(self, prompt_tokens: list[int]) -> int:
        """Submit the prompt; return the number of decode calls made.

        Raises:
            ContextOverflow: If the prompt does not fit, before any decode.
            DecodeFailure: If a decode or encode call fails.
        """
        if self._provider.has_encoder():
            return self._encode_prompt(prompt_tokens)

        tokens = prompt_tokens if self._carry is None else [self._carry, *prompt_tokens]
        self._window.check(len(tokens))

        chunk_size = self._batch.capacity
        n_calls = 0
        for offset in range(0, len(tokens), chunk_size):
            chunk = tokens[offset : offset + chunk_size]
            self._batch.clear()
            self._batch.add_sequence(
                chunk,
                self._window.used_cells,
                _SEQUENCE_IDS,
                logits_last=offset + chunk_size >= len(tokens),
            )
            self._decode_batch()
            n_calls += 1
            self._carry = None
        return n_calls

    def _encode_prompt(self, prompt_tokens: list[int]) -> int:
        # Every encoder pass starts a fresh decoder sequence.
        self._context.clear()
        self._window.reset()
        self._carry = None

        if len(prompt_tokens) > self._window.capacity:
            raise ContextOverflow(0, len(prompt_tokens), self._window.capacity)
        self._batch.clear()
        self._batch.add_sequence(prompt_tokens, 0, _SEQUENCE_IDS, logits_last=False)
        status = self._context.encode(self._batch)
        if status != 0:
            raise DecodeFailure(f"encode returned status {status}", status)

        self._batch.clear()
        self._batch.add(
            self._provider.decoder_start_token(), self._window.used_cells, _SEQUENCE_IDS, True
        )
        self._decode_batch()
        return 1

    def _decode_batch(self) -> None:
        """Capacity check, decode, commit.

        Raises:
            ContextOverflow: If the batch does not fit; decode is not called.
            DecodeFailure: If decode returns a nonzero status.
        """
        n = len(self._batch)
        self._window.check(n)
        status = self._context.decode(self._batch)
        if status != 0:
            raise DecodeFailure(f"decode returned status {status}", status)
        self._window.commit(n)

    def _read_logits(self) -> np.ndarray:
        """Logits row of the last entry that requested logits.

        Raises:
            DecodeFailure: If the row is missing or malformed.
        """
        index = self._batch.logits_index
        if index < 0:
            raise DecodeFailure("no batch entry requested logits")
        try:
            row = np.asarray(self._context.logits(index))
        except IndexError as exc:
            raise DecodeFailure(f"no logits for batch entry {index}: {exc}") from exc
        n_vocab = self._provider.n_vocab
        if row.shape != (n_vocab,):
            raise DecodeFailure(f"malformed logits row of shape {row.shape}, expected ({n_vocab},)")
        if not np.all(np.isfinite(row) | np.isneginf(row)):
            raise DecodeFailure("logits row contains NaN or +inf")
        if not np.any(np.isfinite(row)):
            raise DecodeFailure("logits row has no finite values")
        return row
