"""
Command line entry point.

Usage:
    python -m rectrac_export                      # today's reservations, headless
    python -m rectrac_export --headed --debug     # watch the browser, verbose logs
    python -m rectrac_export --json-logs          # machine-readable logs for cron/CI
    python -m rectrac_export --begin 2024-05-01 --end 2024-05-07 --output week.csv
"""
import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

from rectrac_export.config import Settings, parse_terms
from rectrac_export.engine.export_protocol import ExportCriteria
from rectrac_export.engine.orchestrator import run_export
from rectrac_export.errors import AutomationError, ConfigError
from rectrac_export.utils.logger import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export the RecTrac facility reservation report to CSV")
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="One JSON object per log line, for scheduled runs",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Artifact path (overrides RECTRAC_OUTPUT_PATH)",
    )
    parser.add_argument(
        "--terms",
        type=str,
        help='Comma separated description terms, e.g. "Community Lounge,Full A+B"',
    )
    parser.add_argument(
        "--begin",
        type=date.fromisoformat,
        help="Begin date, YYYY-MM-DD (default: today)",
    )
    parser.add_argument(
        "--end",
        type=date.fromisoformat,
        help="End date, YYYY-MM-DD (default: begin date)",
    )
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    updates = {}
    if args.headed:
        updates["headless"] = False
    if args.output:
        updates["output_path"] = args.output
    if args.terms:
        updates["fac_terms"] = parse_terms(args.terms)
    return settings.model_copy(update=updates) if updates else settings


def build_criteria(args: argparse.Namespace) -> ExportCriteria | None:
    """None leaves the run on today's date in the configured timezone."""
    if args.begin is None and args.end is None:
        return None
    begin = args.begin or args.end
    end = args.end or begin
    try:
        return ExportCriteria(begin=begin, end=end)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log = setup_logging(debug=args.debug, json_logs=args.json_logs)

    try:
        settings = load_settings(args)
        criteria = build_criteria(args)
    except ConfigError as e:
        log.error("❌ Configuration error", error=str(e))
        return 1

    try:
        result = asyncio.run(run_export(settings, criteria))
    except AutomationError as e:
        log.error("❌ Export failed", phase=e.phase, error=str(e))
        return 1

    log.info("🎉 Export complete", rows=len(result.rows), output=str(result.output_path),
             channel=result.channel.value if result.channel else None)
    print(f"Wrote {len(result.rows)} rows to {result.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
