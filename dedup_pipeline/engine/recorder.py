"""Progress side-channel: JSON log events, optional callback, debug dumps."""

import os
from typing import Callable, Optional

from ..core.logger import PipelineLogger
from ..core.types import NewsItem, RoundReport, UsageStats
from ..core.utils import batch_label, items_to_json, write_json


class RunRecorder:
    """Emits batch/round progress records. Nothing here affects control flow.

    When dump_dir is set, batch and round inputs/outputs are written as
    "RR-BB-input.json" / "RR-BB-output.json" ("RR---" for whole rounds).
    """

    def __init__(self, logger: Optional[PipelineLogger] = None,
                 on_progress: Optional[Callable[[dict], None]] = None,
                 dump_dir: Optional[str] = None):
        self.logger = logger or PipelineLogger()
        self.on_progress = on_progress
        self.dump_dir = dump_dir

    def _notify(self, record: dict) -> None:
        if self.on_progress is not None:
            self.on_progress(record)

    def dump(self, items: list[NewsItem], kind: str, round_number: int,
             batch_number: Optional[int] = None) -> None:
        if not self.dump_dir:
            return
        path = os.path.join(self.dump_dir, f"{batch_label(round_number, batch_number)}-{kind}.json")
        write_json(items_to_json(items), path)

    def batch_done(self, round_number: int, batch_number: int, input_count: int,
                   output_count: int, usage: UsageStats, failed: bool = False) -> None:
        status = "failed" if failed else "done"
        self.logger.batch_complete(round_number, batch_number, input_count,
                                   output_count, usage.to_dict(), status=status)
        self._notify({"type": "batch", "round": round_number, "batch": batch_number,
                      "status": status, "input_count": input_count,
                      "output_count": output_count, "usage": usage.to_dict()})

    def round_started(self, round_number: int, input_count: int, batch_count: int,
                      mode: str) -> None:
        self.logger.round_start(round_number, input_count, batch_count, mode=mode)

    def round_done(self, report: RoundReport, decision: str, total: UsageStats,
                   total_calls: int) -> None:
        self.logger.round_complete(report.round_number, report.input_count,
                                   report.output_count, report.ratio,
                                   report.call_count, decision)
        self.logger.report_usage(total.input_tokens, total.output_tokens,
                                 total.total_tokens, total_calls)
        record = report.to_dict()
        record.update({"type": "round", "decision": decision})
        self._notify(record)
