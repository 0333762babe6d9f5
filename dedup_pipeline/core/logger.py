"""JSON stdout logger for dedup runs.

Every line is one JSON object so a log collector (or a test) can parse the
run as a stream of events.
"""

import json
import time
from typing import Optional


class PipelineLogger:
    """
    Emits JSON lines to stdout.

    Event types:
    - "log"    → free-form message with a level
    - "round"  → round lifecycle (running / continue / stopped)
    - "batch"  → per-batch before/after counts and usage
    - "usage"  → cumulative token usage
    - "cost"   → LLM spend reported by the client
    - "result" → final summary of a run
    """

    def __init__(self, run_id: str = "", verbose: bool = True):
        self.run_id = run_id
        self.verbose = verbose
        self._start = time.time()

    def _emit(self, data: dict) -> None:
        print(json.dumps(data, ensure_ascii=False), flush=True)

    # ── Round events ──

    def round_start(self, round_number: int, input_count: int, batch_count: int,
                    mode: str = "initial") -> None:
        self._emit({"event": "round", "round": round_number, "status": "running",
                    "input_count": input_count, "batches": batch_count, "mode": mode})
        self.info(
            f"▶ Round {round_number}: {input_count} items in {batch_count} batches ({mode})",
            phase=f"round-{round_number}",
        )

    def round_complete(self, round_number: int, input_count: int, output_count: int,
                       ratio: float, calls: int, decision: str) -> None:
        self._emit({"event": "round", "round": round_number, "status": decision,
                    "input_count": input_count, "output_count": output_count,
                    "ratio": round(ratio, 4), "calls": calls})
        self.info(
            f"Round {round_number} complete: {input_count} -> {output_count} items "
            f"(ratio {ratio:.2f}, {calls} LLM requests)",
            phase=f"round-{round_number}",
        )

    def batch_complete(self, round_number: int, batch_number: int, input_count: int,
                       output_count: int, usage: Optional[dict] = None,
                       status: str = "done") -> None:
        self._emit({"event": "batch", "round": round_number, "batch": batch_number,
                    "status": status, "input_count": input_count,
                    "output_count": output_count, "usage": usage or {}})

    # ── Log events ──

    def _log(self, level: str, msg: str, phase: Optional[str]) -> None:
        if level == "debug" and not self.verbose:
            return
        self._emit({"event": "log", "level": level, "phase": phase, "message": msg})

    def info(self, msg: str, phase: Optional[str] = None) -> None:
        self._log("info", msg, phase)

    def warn(self, msg: str, phase: Optional[str] = None) -> None:
        self._log("warn", msg, phase)

    def error(self, msg: str, phase: Optional[str] = None) -> None:
        self._log("error", msg, phase)

    def debug(self, msg: str, phase: Optional[str] = None) -> None:
        self._log("debug", msg, phase)

    # ── Usage / cost ──

    def report_usage(self, input_tokens: int, output_tokens: int,
                     total_tokens: int, calls: int) -> None:
        self._emit({"event": "usage", "input_tokens": input_tokens,
                    "output_tokens": output_tokens, "total_tokens": total_tokens,
                    "calls": calls})

    def report_cost(self, usd: float, tokens: int) -> None:
        self._emit({"event": "cost", "api_cost_usd": round(usd, 4), "tokens_used": tokens})

    # ── Result ──

    def report_result(self, input_count: int, output_count: int, rounds: int,
                      calls: int, fallback: bool = False) -> None:
        remaining = (output_count / input_count * 100) if input_count else 100.0
        self._emit({"event": "result", "input_count": input_count,
                    "output_count": output_count, "rounds": rounds, "calls": calls,
                    "remaining_pct": round(remaining, 1), "fallback": fallback,
                    "elapsed_seconds": round(time.time() - self._start, 1)})
