"""Tests for grouped parallel dispatch and usage aggregation."""

import pytest

from dedup_pipeline.clients.llm_client import CreditExhaustedError
from dedup_pipeline.core.types import UsageStats
from dedup_pipeline.engine.executor import run_batches
from dedup_pipeline.engine.partitioner import partition_initial
from dedup_pipeline.engine.recorder import RunRecorder
from dedup_pipeline.engine.usage import UsageAggregator


class TestRunBatches:

    def test_concurrency_never_exceeds_limit(self, items_factory, probe_oracle, no_sleep):
        batches = partition_initial(items_factory(24), 2)  # 12 batches
        result = run_batches(batches, probe_oracle, 1, concurrency_limit=5,
                             inter_group_delay_ms=2000, sleep=no_sleep)
        assert probe_oracle.peak <= 5
        assert result.call_count == 12

    def test_pauses_between_groups_only(self, items_factory, probe_oracle, no_sleep):
        batches = partition_initial(items_factory(24), 2)
        run_batches(batches, probe_oracle, 1, concurrency_limit=5,
                    inter_group_delay_ms=2000, sleep=no_sleep)
        # groups of 5, 5, 2 -> two pauses
        assert no_sleep.calls == [2.0, 2.0]

    def test_single_group_has_no_pause(self, items_factory, probe_oracle, no_sleep):
        batches = partition_initial(items_factory(6), 2)
        run_batches(batches, probe_oracle, 1, concurrency_limit=5,
                    inter_group_delay_ms=2000, sleep=no_sleep)
        assert no_sleep.calls == []

    def test_results_stay_positional(self, items_factory, probe_oracle, no_sleep):
        batches = partition_initial(items_factory(10), 2)
        result = run_batches(batches, probe_oracle, 1, concurrency_limit=5, sleep=no_sleep)
        assert result.results == batches

    def test_usage_summed_across_batches(self, items_factory, scripted_oracle, no_sleep):
        oracle = scripted_oracle()
        batches = partition_initial(items_factory(9), 3)
        result = run_batches(batches, oracle, 1, concurrency_limit=2, sleep=no_sleep)
        assert result.usage == UsageStats(input_tokens=30, output_tokens=15, total_tokens=45)

    def test_failed_batch_passes_through(self, items_factory, failing_oracle, no_sleep):
        oracle = failing_oracle(fail_batches={2})
        batches = partition_initial(items_factory(9), 3)
        result = run_batches(batches, oracle, 1, concurrency_limit=5, sleep=no_sleep)
        assert result.results[1] == batches[1]
        assert len(result.results[0]) == 1
        assert result.failed_batches == [1]
        assert result.call_count == 3
        # failed batch contributes no usage
        assert result.usage == UsageStats(input_tokens=14, output_tokens=6, total_tokens=20)

    def test_malformed_oracle_result_passes_through(self, items_factory, no_sleep):
        class NoneOracle:
            def deduplicate_batch(self, batch, round_number, batch_number):
                return None

        batches = partition_initial(items_factory(4), 2)
        result = run_batches(batches, NoneOracle(), 1, concurrency_limit=2, sleep=no_sleep)
        assert result.results == batches
        assert result.failed_batches == [0, 1]
        assert result.usage == UsageStats()

    def test_credit_exhaustion_propagates(self, items_factory, credit_oracle, no_sleep):
        batches = partition_initial(items_factory(4), 2)
        with pytest.raises(CreditExhaustedError):
            run_batches(batches, credit_oracle, 1, concurrency_limit=2, sleep=no_sleep)

    def test_batch_events_reach_progress_hook(self, items_factory, scripted_oracle, logger, no_sleep):
        records = []
        recorder = RunRecorder(logger, on_progress=records.append)
        batches = partition_initial(items_factory(4), 2)
        run_batches(batches, scripted_oracle({(3, 2): 1}), 3, concurrency_limit=2,
                    recorder=recorder, sleep=no_sleep)
        assert [(r["round"], r["batch"], r["output_count"]) for r in records] == [
            (3, 1, 2), (3, 2, 1),
        ]


class TestUsageAggregator:

    def test_add_and_reset(self):
        agg = UsageAggregator()
        agg.add(UsageStats(1, 2, 3))
        agg.add(UsageStats(10, 20, 30))
        assert agg.current() == UsageStats(11, 22, 33)
        agg.reset()
        assert agg.current() == UsageStats()

    def test_order_does_not_matter(self):
        parts = [UsageStats(1, 2, 4), UsageStats(5, 0, 5), UsageStats(0, 9, 9)]
        forward, backward = UsageAggregator(), UsageAggregator()
        for p in parts:
            forward.add(p)
        for p in reversed(parts):
            backward.add(p)
        assert forward.current() == backward.current()
