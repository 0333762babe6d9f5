"""Token usage accumulator shared across batches and rounds."""

from ..core.types import UsageStats


class UsageAggregator:
    """Sums UsageStats. Only touched from the thread that drives the rounds."""

    def __init__(self):
        self._usage = UsageStats()

    def add(self, usage: UsageStats) -> None:
        self._usage = self._usage + usage

    def current(self) -> UsageStats:
        return self._usage

    def reset(self) -> None:
        self._usage = UsageStats()
