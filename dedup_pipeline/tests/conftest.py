"""Shared pytest fixtures for dedup pipeline tests."""

import json
import re
import shutil
import tempfile
import threading
import time

import pytest

from dedup_pipeline.core.types import DedupConfig, NewsItem, OracleResult, UsageStats
from dedup_pipeline.core.logger import PipelineLogger
from dedup_pipeline.clients.llm_client import CreditExhaustedError


# ── Mock LLM Client ─────────────────────────────────────


class MockLLMClient:
    """Fake LLM client that merges exact-duplicate texts without API calls."""

    def __init__(self):
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_tokens = 0
        self.total_cost_usd = 0.0
        self.call_count = 0
        self.model = "mock-gpt"
        self.last_usage = UsageStats()
        self._lock = threading.Lock()

    def call_json(self, system, user, **kwargs):
        with self._lock:
            self.call_count += 1
            self.total_input_tokens += 100
            self.total_output_tokens += 200
            self.total_tokens += 300
        self.last_usage = UsageStats(input_tokens=100, output_tokens=200, total_tokens=300)

        match = re.search(r"--- ITEMS START ---\n(.*)\n--- ITEMS END ---", user, re.DOTALL)
        items = json.loads(match.group(1)) if match else []
        merged = {}
        for item in items:
            key = item["text"]
            if key in merged:
                merged[key]["sources"] += [s for s in item["sources"]
                                           if s not in merged[key]["sources"]]
            else:
                merged[key] = {"text": item["text"], "sources": list(item["sources"])}
        return {"items": list(merged.values())}

    def get_cost_summary(self):
        return {
            "calls": self.call_count,
            "input_tokens": self.total_input_tokens,
            "output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": 0.0,
        }


class _ErrorLLMClient(MockLLMClient):
    """MockLLMClient whose calls always fail."""

    def call_json(self, system, user, **kwargs):
        with self._lock:
            self.call_count += 1
        raise ValueError("Forced JSON parse error")


# ── Fake oracles ────────────────────────────────────────


class ScriptedOracle:
    """Drops a planned number of trailing items per (round, batch)."""

    def __init__(self, plan=None, usage=None):
        self.plan = plan or {}
        self.usage = usage or UsageStats(input_tokens=10, output_tokens=5, total_tokens=15)
        self.calls = []
        self._lock = threading.Lock()

    def deduplicate_batch(self, batch, round_number, batch_number):
        with self._lock:
            self.calls.append((round_number, batch_number, len(batch)))
        drop = self.plan.get((round_number, batch_number), 0)
        return OracleResult(items=list(batch[:len(batch) - drop]), usage=self.usage)


class ShrinkingOracle:
    """Removes the last item of every batch, every round."""

    def __init__(self):
        self.rounds_seen = set()

    def deduplicate_batch(self, batch, round_number, batch_number):
        self.rounds_seen.add(round_number)
        return OracleResult(items=list(batch[:-1]),
                            usage=UsageStats(input_tokens=1, output_tokens=1, total_tokens=2))


class FailingOracle:
    """Raises for the listed batch numbers (all batches when None)."""

    def __init__(self, fail_batches=None, error=RuntimeError("oracle timeout")):
        self.fail_batches = fail_batches
        self.error = error

    def deduplicate_batch(self, batch, round_number, batch_number):
        if self.fail_batches is None or batch_number in self.fail_batches:
            raise self.error
        return OracleResult(items=list(batch[:1]),
                            usage=UsageStats(input_tokens=7, output_tokens=3, total_tokens=10))


class ConcurrencyProbeOracle:
    """Tracks the peak number of in-flight calls; later batches finish first."""

    def __init__(self, delay=0.02):
        self.delay = delay
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def deduplicate_batch(self, batch, round_number, batch_number):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(self.delay / batch_number)
            return OracleResult(items=list(batch))
        finally:
            with self._lock:
                self.in_flight -= 1


class CreditOracle:
    def deduplicate_batch(self, batch, round_number, batch_number):
        raise CreditExhaustedError("API credits exhausted")


# ── Fixtures ────────────────────────────────────────────


def make_items(count, prefix="item"):
    return [NewsItem(text=f"{prefix} {i}", sources=(f"https://t.me/src/{i}",))
            for i in range(count)]


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def tmp_output_dir():
    d = tempfile.mkdtemp(prefix="dedup_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def logger():
    return PipelineLogger(run_id="test_run")


@pytest.fixture
def no_sleep():
    return SleepRecorder()


@pytest.fixture
def dedup_config():
    return DedupConfig(
        batch_size=150,
        max_parallel_requests=5,
        inter_group_delay_ms=2000,
        inter_round_delay_ms=4000,
        stop_ratio_threshold=0.98,
        min_items_per_round=30,
    )


@pytest.fixture
def mock_llm():
    return MockLLMClient()


@pytest.fixture
def mock_llm_error():
    return _ErrorLLMClient()


@pytest.fixture
def items_factory():
    return make_items


@pytest.fixture
def scripted_oracle():
    return ScriptedOracle


@pytest.fixture
def shrinking_oracle():
    return ShrinkingOracle()


@pytest.fixture
def failing_oracle():
    return FailingOracle


@pytest.fixture
def probe_oracle():
    return ConcurrencyProbeOracle()


@pytest.fixture
def credit_oracle():
    return CreditOracle()
