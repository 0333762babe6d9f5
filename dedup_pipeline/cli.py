#!/usr/bin/env python3
"""
News Dedup Pipeline CLI.

Usage:
  python3 -m dedup_pipeline.cli dedupe --input collected.json --output deduplicated.json
  python3 -m dedup_pipeline.cli dedupe --input collected.json --output out.json --oracle exact
  python3 -m dedup_pipeline.cli status --output deduplicated.json
  python3 -m dedup_pipeline.cli validate-config --config config.yaml
"""

import sys
import argparse
import json

from dotenv import load_dotenv


def main(argv=None):
    load_dotenv()

    parser = argparse.ArgumentParser(description="News Dedup Pipeline CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ── dedupe ──
    dedupe_parser = subparsers.add_parser("dedupe", help="Deduplicate a collected news file")
    dedupe_parser.add_argument("--input", required=True, help="Collected news JSON path")
    dedupe_parser.add_argument("--output", required=True, help="Deduplicated output JSON path")
    dedupe_parser.add_argument("--config", default=None, help="Config YAML path")
    dedupe_parser.add_argument("--oracle", choices=["llm", "exact", "passthrough"],
                               default=None, help="Oracle used for each batch")
    dedupe_parser.add_argument("--batch-size", type=int, default=None, help="Max items per batch")
    dedupe_parser.add_argument("--dump-dir", default=None,
                               help="Write per-batch/round input and output JSON here")
    dedupe_parser.add_argument("--verbose", action="store_true", help="Emit debug log lines")

    # ── status ──
    status_parser = subparsers.add_parser("status", help="Show the report of the last run")
    status_parser.add_argument("--output", required=True, help="Output JSON path of the run")

    # ── validate-config ──
    validate_parser = subparsers.add_parser("validate-config", help="Load and validate a config")
    validate_parser.add_argument("--config", required=True, help="Config YAML path")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "dedupe":
        return cmd_dedupe(args)
    elif args.command == "status":
        return cmd_status(args)
    elif args.command == "validate-config":
        return cmd_validate_config(args)
    return 1


def cmd_dedupe(args) -> int:
    """Run the multi-round deduplication over one input file."""
    from dedup_pipeline.core.config import load_config
    from dedup_pipeline.core.errors import PipelineError
    from dedup_pipeline.core.logger import PipelineLogger
    from dedup_pipeline.orchestrator.runner import DedupRunner

    overrides = {
        "llm.oracle": args.oracle,
        "batch_size": args.batch_size,
        "dump_dir": args.dump_dir,
    }
    try:
        config = load_config(args.config, overrides)
    except PipelineError as e:
        _error_json(f"Config error: {e}")
        return 1

    try:
        runner = DedupRunner(config, logger=PipelineLogger(verbose=args.verbose))
        return runner.run(args.input, args.output)
    except PipelineError as e:
        _error_json(f"Pipeline error: {e}")
        return 1
    except Exception as e:
        _error_json(f"Unexpected error: {e}")
        return 1


def cmd_status(args) -> int:
    """Print the run report as JSON."""
    from dedup_pipeline.orchestrator.runner import load_report

    report = load_report(args.output)
    if not report:
        print(json.dumps({"status": "not_found"}, indent=2))
        return 0

    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_validate_config(args) -> int:
    """Print the effective configuration, or the error that rejects it."""
    from dedup_pipeline.core.config import load_config
    from dedup_pipeline.core.errors import PipelineError

    try:
        config = load_config(args.config)
    except PipelineError as e:
        _error_json(f"Config error: {e}")
        return 1

    effective = {
        "dedup": config.dedup.to_dict(),
        "llm": {
            "model": config.llm.model,
            "base_url": config.llm.base_url,
            "oracle": config.llm.oracle,
            "max_output_tokens": config.llm.max_output_tokens,
            "api_key_set": bool(config.llm.api_key),
        },
    }
    print(json.dumps(effective, indent=2, ensure_ascii=False))
    return 0


def _error_json(message: str) -> None:
    """Print error as JSON log line to stdout."""
    print(json.dumps({
        "event": "log", "level": "error", "phase": None,
        "message": message,
    }, ensure_ascii=False), flush=True)


if __name__ == "__main__":
    sys.exit(main())
