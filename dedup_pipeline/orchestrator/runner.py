"""Dedup runner: reads collected news, runs the engine, writes the result."""

import os
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from ..core.types import OracleKind, RunConfig, RunReport
from ..core.logger import PipelineLogger
from ..core.utils import items_to_json, load_news_payload, write_json
from ..clients.llm_client import LLMClient, CreditExhaustedError
from ..engine.controller import DedupEngine
from ..engine.oracle import ExactTextOracle, LLMOracle, PassthroughOracle


REPORT_FILE = "run_report.json"


def build_oracle(config: RunConfig, logger: PipelineLogger):
    """Create the oracle named by config.llm.oracle. May raise LLMAPIError."""
    kind = config.llm.oracle
    if kind == OracleKind.PASSTHROUGH.value:
        return PassthroughOracle(), None
    if kind == OracleKind.EXACT.value:
        return ExactTextOracle(), None
    client = LLMClient(
        api_key=config.llm.api_key,
        model=config.llm.model,
        base_url=config.llm.base_url,
        logger=logger,
        cache_dir=config.llm.cache_dir,
    )
    return LLMOracle(client, max_output_tokens=config.llm.max_output_tokens), client


def report_path_for(output_path: str) -> str:
    return os.path.join(os.path.dirname(os.path.abspath(output_path)), REPORT_FILE)


def load_report(output_path: str) -> RunReport | None:
    """Load the run report written next to output_path. Returns None if not found."""
    path = report_path_for(output_path)
    if not os.path.exists(path):
        return None
    try:
        return RunReport.load(path)
    except (OSError, ValueError, TypeError):
        return None


class DedupRunner:
    def __init__(self, config: RunConfig, logger: Optional[PipelineLogger] = None,
                 oracle=None, sleep=time.sleep):
        self.config = config
        self.run_id = f"dedup_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        self.logger = logger or PipelineLogger(run_id=self.run_id)
        self.sleep = sleep
        self.client = None
        if oracle is not None:
            self.oracle = oracle
        else:
            self.oracle, self.client = build_oracle(config, self.logger)

    def run(self, input_path: str, output_path: str) -> int:
        """Deduplicate input_path into output_path.

        Returns exit code: 0=success or fallback to original input, 1=failed.
        Any engine failure other than exhausted credits falls back to the
        original, unprocessed items.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        start_time = time.time()

        try:
            payload = load_news_payload(input_path)
        except FileNotFoundError:
            self.logger.error(f"Input not found: {input_path}")
            return 1
        except (ValueError, TypeError) as e:
            self.logger.error(f"Cannot read input {input_path}: {e}")
            return 1

        items = payload["items"]
        self.logger.info(
            f"Dedup started: {len(items)} items from {input_path} (run {self.run_id})"
        )
        self.logger.debug(f"Config: {self.config.dedup.to_dict()}")

        report = RunReport(status="done", started_at=started_at, input_count=len(items))
        engine = DedupEngine(self.config.dedup, self.oracle, logger=self.logger,
                             sleep=self.sleep)
        try:
            result = engine.run(items)
            final_items = result.items
            report.rounds = [r.to_dict() for r in result.rounds]
            report.oracle_calls = result.call_count
            report.usage = result.usage.to_dict()
        except CreditExhaustedError as e:
            self.logger.error(f"Dedup aborted: {e}")
            report.status = "failed"
            report.error_message = str(e)
            self._finish(report, start_time, output_path)
            return 1
        except Exception as e:
            self.logger.warn(f"Dedup failed, returning original items: {e}")
            final_items = items
            report.status = "fallback"
            report.error_message = str(e)
            report.oracle_calls = engine.call_count
            report.usage = engine.usage.current().to_dict()

        out = {k: v for k, v in payload.items() if k != "items"}
        out["items"] = items_to_json(final_items)
        write_json(out, output_path)

        report.output_count = len(final_items)
        self._finish(report, start_time, output_path)
        self.logger.report_result(len(items), len(final_items), len(report.rounds),
                                  report.oracle_calls, fallback=report.status == "fallback")
        return 0

    def _finish(self, report: RunReport, start_time: float, output_path: str) -> None:
        report.completed_at = datetime.now(timezone.utc).isoformat()
        report.duration_seconds = round(time.time() - start_time, 3)
        if self.client is not None:
            report.api_cost_usd = self.client.get_cost_summary()["cost_usd"]
        path = report_path_for(output_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        report.save(path)
