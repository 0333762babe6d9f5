"""Round loop: partition, dispatch, measure shrink, decide whether to go again."""

import time
from typing import Callable, Iterable, Optional

from ..core.logger import PipelineLogger
from ..core.types import (
    DedupConfig, DedupResult, NewsItem, RoundReport, RoundState,
)
from ..core.utils import count_items, flatten
from .executor import run_batches
from .oracle import DedupOracle
from .partitioner import partition_initial, partition_round
from .recorder import RunRecorder
from .usage import UsageAggregator


def compute_max_rounds(start_count: int, min_items_per_round: int) -> int:
    return start_count // min_items_per_round


def ratio_converged(ratio: float, threshold: float, comparison: str = ">=") -> bool:
    if comparison == ">":
        return ratio > threshold
    return ratio >= threshold


class DedupEngine:
    """Multi-round deduplication against a DedupOracle.

    State moves INIT -> ROUND_RUNNING -> (CONTINUE -> ROUND_RUNNING)* -> STOP
    -> DONE. The working list is kept as the previous round's per-batch
    outputs so that the next round can interleave them.
    """

    def __init__(self, config: DedupConfig, oracle: DedupOracle,
                 logger: Optional[PipelineLogger] = None,
                 on_progress: Optional[Callable[[dict], None]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config.validate()
        self.oracle = oracle
        self.logger = logger or PipelineLogger()
        self.recorder = RunRecorder(self.logger, on_progress, config.dump_dir)
        self.sleep = sleep
        self.usage = UsageAggregator()
        self.state = RoundState.INIT
        self.round_number = 0
        self.call_count = 0

    def _run_round(self, batches: list[list[NewsItem]], input_count: int,
                   mode: str) -> tuple[list[list[NewsItem]], RoundReport]:
        self.state = RoundState.ROUND_RUNNING
        self.recorder.round_started(self.round_number, input_count, len(batches), mode)
        self.recorder.dump(flatten(batches), "input", self.round_number)

        started = time.time()
        run = run_batches(
            batches, self.oracle, self.round_number,
            self.config.max_parallel_requests, self.config.inter_group_delay_ms,
            recorder=self.recorder, sleep=self.sleep,
        )
        self.usage.add(run.usage)
        self.call_count += run.call_count

        self.recorder.dump(flatten(run.results), "output", self.round_number)
        report = RoundReport(
            round_number=self.round_number,
            input_count=input_count,
            output_count=count_items(run.results),
            batch_count=len(batches),
            call_count=run.call_count,
            failed_batches=len(run.failed_batches),
            usage=run.usage,
            duration_seconds=round(time.time() - started, 3),
        )
        return run.results, report

    def run(self, items: Iterable[NewsItem | str]) -> DedupResult:
        items = [NewsItem.from_raw(i) for i in items]
        self.state = RoundState.INIT
        self.round_number = 0
        self.call_count = 0
        self.usage.reset()

        if not items:
            self.state = RoundState.DONE
            return DedupResult()

        cfg = self.config
        start_count = len(items)
        max_rounds = compute_max_rounds(start_count, cfg.min_items_per_round)
        self.logger.info(
            f"Starting multi-round deduplication: {start_count} items, max rounds {max_rounds}",
            phase="dedup",
        )

        reports: list[RoundReport] = []
        previous: list[list[NewsItem]] = []
        while True:
            self.round_number += 1
            if self.round_number == 1:
                batches = partition_initial(items, cfg.batch_size)
                mode = "initial"
            else:
                batches = partition_round(previous, cfg.batch_size, self.round_number,
                                          cfg.shuffle_seed)
                mode = "round-robin" if cfg.shuffle_seed is None else "shuffled"

            previous, report = self._run_round(batches, count_items(batches), mode)
            reports.append(report)

            converged = ratio_converged(report.ratio, cfg.stop_ratio_threshold,
                                        cfg.stop_comparison)
            if converged or self.round_number >= max_rounds:
                self.state = RoundState.STOP
                self.recorder.round_done(report, "stopped", self.usage.current(),
                                         self.call_count)
                if converged:
                    reason = f"ratio {report.ratio:.2f} {cfg.stop_comparison} {cfg.stop_ratio_threshold}"
                else:
                    reason = f"reached max rounds ({max_rounds})"
                self.logger.info(f"Stopping: {reason}", phase="dedup")
                break

            self.state = RoundState.CONTINUE
            self.recorder.round_done(report, "continue", self.usage.current(),
                                     self.call_count)
            if cfg.inter_round_delay_ms > 0:
                self.logger.debug(
                    f"Waiting {cfg.inter_round_delay_ms / 1000:.1f}s before next round...",
                    phase="dedup",
                )
                self.sleep(cfg.inter_round_delay_ms / 1000)

        self.state = RoundState.DONE
        final_items = flatten(previous)
        total = self.usage.current()
        self.logger.info(
            f"Final result: {start_count} -> {len(final_items)} items in "
            f"{len(reports)} rounds, {self.call_count} LLM requests, "
            f"{total.input_tokens} prompt + {total.output_tokens} completion = "
            f"{total.total_tokens} total tokens",
            phase="dedup",
        )
        return DedupResult(items=final_items, usage=total, call_count=self.call_count,
                           rounds=reports, max_rounds=max_rounds)


def deduplicate(items: Iterable[NewsItem | str], oracle: DedupOracle,
                config: Optional[DedupConfig] = None,
                logger: Optional[PipelineLogger] = None,
                on_progress: Optional[Callable[[dict], None]] = None,
                sleep: Callable[[float], None] = time.sleep) -> DedupResult:
    """Run the multi-round engine once and return items plus usage."""
    engine = DedupEngine(config or DedupConfig(), oracle, logger=logger,
                         on_progress=on_progress, sleep=sleep)
    return engine.run(items)
