"""Tests for PipelineLogger JSON output format."""

import json
import io
import sys

from dedup_pipeline.core.logger import PipelineLogger


def _capture_logger_output(fn):
    """Capture stdout from a logger call, return parsed JSON lines."""
    old_stdout = sys.stdout
    sys.stdout = buf = io.StringIO()
    try:
        fn()
    finally:
        sys.stdout = old_stdout
    lines = [l for l in buf.getvalue().strip().split("\n") if l.strip()]
    return [json.loads(l) for l in lines]


class TestLoggerEvents:

    def test_round_start_emits_round_and_log(self):
        logger = PipelineLogger(run_id="test")
        events = _capture_logger_output(
            lambda: logger.round_start(2, 305, 3, mode="round-robin")
        )
        assert len(events) == 2
        assert events[0]["event"] == "round"
        assert events[0]["round"] == 2
        assert events[0]["status"] == "running"
        assert events[0]["batches"] == 3
        assert events[0]["mode"] == "round-robin"
        assert events[1]["event"] == "log"
        assert events[1]["phase"] == "round-2"

    def test_round_complete_rounds_ratio(self):
        logger = PipelineLogger()
        events = _capture_logger_output(
            lambda: logger.round_complete(1, 320, 305, 305 / 320, 3, "continue")
        )
        assert events[0]["status"] == "continue"
        assert events[0]["ratio"] == 0.9531
        assert events[0]["calls"] == 3
        assert "320 -> 305" in events[1]["message"]

    def test_batch_complete(self):
        logger = PipelineLogger()
        events = _capture_logger_output(
            lambda: logger.batch_complete(1, 2, 150, 140, {"total_tokens": 9}, status="failed")
        )
        assert events == [{
            "event": "batch", "round": 1, "batch": 2, "status": "failed",
            "input_count": 150, "output_count": 140, "usage": {"total_tokens": 9},
        }]

    def test_log_levels(self):
        logger = PipelineLogger()
        for level in ("info", "warn", "error", "debug"):
            events = _capture_logger_output(
                lambda: getattr(logger, level)(f"{level} message", phase="dedup")
            )
            assert events[0]["event"] == "log"
            assert events[0]["level"] == level
            assert events[0]["phase"] == "dedup"

    def test_quiet_logger_drops_debug(self):
        logger = PipelineLogger(verbose=False)
        events = _capture_logger_output(lambda: logger.debug("hidden"))
        assert events == []
        events = _capture_logger_output(lambda: logger.info("shown"))
        assert len(events) == 1


class TestUsageAndResult:

    def test_report_usage(self):
        logger = PipelineLogger()
        events = _capture_logger_output(lambda: logger.report_usage(10, 20, 35, 4))
        assert events[0] == {"event": "usage", "input_tokens": 10, "output_tokens": 20,
                             "total_tokens": 35, "calls": 4}

    def test_report_cost_rounds(self):
        logger = PipelineLogger()
        events = _capture_logger_output(lambda: logger.report_cost(0.123456, 5000))
        assert events[0]["api_cost_usd"] == 0.1235
        assert events[0]["tokens_used"] == 5000

    def test_report_result_percentage(self):
        logger = PipelineLogger()
        events = _capture_logger_output(lambda: logger.report_result(320, 303, 2, 6))
        assert events[0]["event"] == "result"
        assert events[0]["remaining_pct"] == 94.7
        assert events[0]["fallback"] is False

    def test_unicode_not_escaped(self):
        logger = PipelineLogger()
        events = _capture_logger_output(lambda: logger.info("خبر عاجل"))
        assert events[0]["message"] == "خبر عاجل"
