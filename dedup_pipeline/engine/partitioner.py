"""Split item lists into bounded batches.

Round 1 chunks the input contiguously. Later rounds interleave the previous
round's per-batch outputs so that items which survived together in one batch
land in different batches next time.
"""

import random
from typing import Optional, Sequence

from ..core.errors import ConfigError
from ..core.types import NewsItem


def _check_batch_size(batch_size: int) -> None:
    if not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigError(f"batch_size must be a positive integer, got {batch_size!r}")


def chunk(items: Sequence, batch_size: int) -> list[list]:
    _check_batch_size(batch_size)
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def partition_initial(items: Sequence[NewsItem], batch_size: int) -> list[list[NewsItem]]:
    """Contiguous slices of at most batch_size, original order preserved."""
    return chunk(items, batch_size)


def round_robin_order(previous_batches: Sequence[Sequence[NewsItem]]) -> list[NewsItem]:
    """Draw one item at a time from each non-empty source, cycling until all are drained.

    Reads by index; the source lists are never modified.
    """
    positions = [0] * len(previous_batches)
    ordered = []
    remaining = sum(len(b) for b in previous_batches)
    source = 0
    while remaining:
        if positions[source] < len(previous_batches[source]):
            ordered.append(previous_batches[source][positions[source]])
            positions[source] += 1
            remaining -= 1
        source = (source + 1) % len(previous_batches)
    return ordered


def partition_round_robin(previous_batches: Sequence[Sequence[NewsItem]],
                          batch_size: int) -> list[list[NewsItem]]:
    """Redistribute the previous round's per-batch outputs round-robin.

    A new batch starts whenever the current one reaches batch_size; the last
    partially filled batch is still emitted.
    """
    _check_batch_size(batch_size)
    return chunk(round_robin_order(previous_batches), batch_size)


def partition_shuffled(previous_batches: Sequence[Sequence[NewsItem]], batch_size: int,
                       seed: int, round_number: int) -> list[list[NewsItem]]:
    """Round-robin order followed by a seeded shuffle before re-chunking."""
    _check_batch_size(batch_size)
    ordered = round_robin_order(previous_batches)
    random.Random(seed + round_number).shuffle(ordered)
    return chunk(ordered, batch_size)


def partition_round(previous_batches: Sequence[Sequence[NewsItem]], batch_size: int,
                    round_number: int, shuffle_seed: Optional[int] = None) -> list[list[NewsItem]]:
    """Partition for round >= 2 using the configured redistribution policy."""
    if shuffle_seed is None:
        return partition_round_robin(previous_batches, batch_size)
    return partition_shuffled(previous_batches, batch_size, shuffle_seed, round_number)
