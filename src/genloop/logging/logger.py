"""Diagnostic logger for per-step generation events.

Uses the standard ``logging`` module with the ``"genloop"`` logger.
No ``print()`` statements. Supports three verbosity levels and an
in-memory diagnostic mode for post-hoc analysis.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from genloop.config import GenLoopConfig
    from genloop.logging.types import StepRecord

logger = logging.getLogger("genloop")

_LOG_LEVELS = frozenset({"none", "summary", "full"})


class GenerationLogger:
    """Per-step diagnostic logger.

    Log levels:
        ``"none"``: No per-step output. Records are still stored if
        ``diagnostic_mode=True``.

        ``"summary"``: One DEBUG line per step with the key metrics.

        ``"full"``: INFO line with a JSON dump of every record field.

    Diagnostic mode stores all records in memory for
    ``get_diagnostic_data()`` and ``get_summary_stats()``.
    """

    def __init__(self, config: GenLoopConfig) -> None:
        if config.log_level not in _LOG_LEVELS:
            logger.warning("Unknown log_level %r, using 'summary'", config.log_level)
            self._log_level = "summary"
        else:
            self._log_level = config.log_level
        self._diagnostic_mode = config.diagnostic_mode
        self._records: list[StepRecord] = []

    def log_step(self, record: StepRecord) -> None:
        if self._diagnostic_mode:
            self._records.append(record)

        if self._log_level == "none":
            return

        if self._log_level == "summary":
            logger.debug(
                "step=%d pos=%d token=%d rank=%d prob=%.4f candidates=%d temp=%.3f "
                "decode=%.2fms sample=%.2fms%s",
                record.step,
                record.position,
                record.token_id,
                record.token_rank,
                record.token_prob,
                record.num_candidates,
                record.temperature_used,
                record.decode_ms,
                record.sample_ms,
                " [EOG]" if record.end_of_generation else "",
            )
        elif self._log_level == "full":
            logger.info("step_record: %s", json.dumps(asdict(record), default=str))

    def get_diagnostic_data(self) -> list[StepRecord]:
        """Return a copy of all stored records (empty unless diagnostic mode)."""
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def get_summary_stats(self) -> dict[str, Any]:
        """Aggregate stats over stored records, or an empty dict if none."""
        if not self._records:
            return {}

        n = len(self._records)
        decode_times = [r.decode_ms for r in self._records]
        sample_times = [r.sample_ms for r in self._records]
        total_decode_s = sum(decode_times) / 1000.0
        return {
            "total_steps": n,
            "mean_prob": sum(r.token_prob for r in self._records) / n,
            "mean_rank": sum(r.token_rank for r in self._records) / n,
            "mean_candidates": sum(r.num_candidates for r in self._records) / n,
            "mean_decode_ms": sum(decode_times) / n,
            "max_decode_ms": max(decode_times),
            "mean_sample_ms": sum(sample_times) / n,
            "decode_tokens_per_second": n / total_decode_s if total_decode_s > 0 else 0.0,
            "end_of_generation_count": sum(1 for r in self._records if r.end_of_generation),
        }
