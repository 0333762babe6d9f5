"""Run one round's batches against the oracle in paced, bounded groups."""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..clients.llm_client import CreditExhaustedError
from ..core.errors import OracleError
from ..core.types import BatchRunResult, NewsItem, OracleResult, UsageStats
from ..core.utils import batch_label
from .oracle import DedupOracle
from .recorder import RunRecorder


def run_batches(batches: list[list[NewsItem]], oracle: DedupOracle, round_number: int,
                concurrency_limit: int, inter_group_delay_ms: int = 0,
                recorder: Optional[RunRecorder] = None,
                sleep: Callable[[float], None] = time.sleep) -> BatchRunResult:
    """Dispatch batches in consecutive groups of at most concurrency_limit.

    Every batch in a group runs concurrently and the group is awaited as a
    whole before the next one starts. results[i] always belongs to
    batches[i]. A batch whose oracle call fails keeps its items unchanged
    and contributes no usage; CreditExhaustedError is not absorbed.
    """
    recorder = recorder or RunRecorder()
    logger = recorder.logger
    phase = f"round-{round_number}"

    results: list[list[NewsItem]] = [[] for _ in batches]
    usage = UsageStats()
    failed: list[int] = []
    call_count = 0

    for start in range(0, len(batches), concurrency_limit):
        group = batches[start:start + concurrency_limit]
        logger.debug(
            f"Processing batches {start + 1}-{start + len(group)} of {len(batches)}",
            phase=phase,
        )
        for offset, batch in enumerate(group):
            recorder.dump(batch, "input", round_number, start + offset + 1)

        with ThreadPoolExecutor(max_workers=len(group),
                                thread_name_prefix=f"dedup-{round_number:02d}") as pool:
            futures = [
                pool.submit(oracle.deduplicate_batch, batch, round_number, start + offset + 1)
                for offset, batch in enumerate(group)
            ]
            outcomes = []
            for offset, future in enumerate(futures):
                try:
                    outcome = future.result()
                    if not isinstance(outcome, OracleResult):
                        raise OracleError(
                            f"oracle returned {type(outcome).__name__}, expected OracleResult",
                            round_number=round_number, batch_number=start + offset + 1,
                        )
                    outcomes.append((outcome, None))
                except CreditExhaustedError:
                    raise
                except Exception as e:
                    outcomes.append((None, e))
        call_count += len(group)

        # Join point: write slots and accumulate usage on this thread only
        for offset, (outcome, error) in enumerate(outcomes):
            index = start + offset
            batch = batches[index]
            if error is not None:
                logger.warn(
                    f"Dedup failed for batch {batch_label(round_number, index + 1)}: {error}; "
                    f"passing {len(batch)} items through",
                    phase=phase,
                )
                results[index] = list(batch)
                failed.append(index)
                recorder.batch_done(round_number, index + 1, len(batch), len(batch),
                                    UsageStats(), failed=True)
                continue

            results[index] = list(outcome.items)
            usage = usage + outcome.usage
            logger.debug(
                f"Batch {batch_label(round_number, index + 1)}: "
                f"{len(batch)} -> {len(outcome.items)} items",
                phase=phase,
            )
            recorder.dump(results[index], "output", round_number, index + 1)
            recorder.batch_done(round_number, index + 1, len(batch),
                                len(outcome.items), outcome.usage)

        if start + concurrency_limit < len(batches) and inter_group_delay_ms > 0:
            logger.debug(
                f"Waiting {inter_group_delay_ms / 1000:.1f}s before next batch group...",
                phase=phase,
            )
            sleep(inter_group_delay_ms / 1000)

    return BatchRunResult(results=results, usage=usage,
                          call_count=call_count, failed_batches=failed)
