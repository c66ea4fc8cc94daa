"""
Command line entry point.

Usage:

  solution-runner first.zip [second.zip] [--timeout 300] [--results jikvict-results.json]

  # the positional form used by the container image also works:
  solution-runner first.zip second.zip 300 /app/output/results.json

Exit code 0 means the tests ran, exited 0, and the run report is ok.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from solution_runner.app.runner import SolutionRunner
from solution_runner.core.models import RunReport, RunStatus
from solution_runner.core.settings import load_settings
from solution_runner.tools.diagnostics import ConsoleSink, FileSink, TeeSink


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="solution-runner",
        description="Merge one or two ZIP archives of a Gradle project and run its tests under a timeout.",
    )
    ap.add_argument("first", help="Path to the first zip archive containing part of the Gradle project")
    ap.add_argument("rest", nargs="*", help="[second-zip] [timeout-seconds] [results-path]")
    ap.add_argument("--timeout", type=float, default=None, help="Timeout in seconds (default: 300)")
    ap.add_argument("--results", default=None, help="Where to copy the result file")
    ap.add_argument("--config-dir", default=None, help="Directory holding runner.yaml")
    ap.add_argument("--log-file", default=None, help="Also append diagnostics to this file")
    ap.add_argument("--json", action="store_true", help="Print the run report as JSON at the end")
    ap.add_argument("-v", "--verbose", action="store_true", help="Print debug diagnostics")
    return ap


def _split_positionals(first: str, rest: List[str]) -> tuple[list[str], Optional[float], Optional[str]]:
    """Map `first [second] [timeout] [results]` onto (archives, timeout, results)."""
    archives = [first]
    timeout: Optional[float] = None
    results: Optional[str] = None
    for token in rest:
        if timeout is None and results is None:
            try:
                timeout = float(token)
                continue
            except ValueError:
                pass
            if len(archives) < 2:
                archives.append(token)
                continue
        if results is None:
            results = token
            continue
        raise ValueError(f"unexpected argument: {token}")
    return archives, timeout, results


def main(argv: Optional[List[str]] = None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)
    try:
        archives, pos_timeout, pos_results = _split_positionals(args.first, args.rest)
    except ValueError as e:
        ap.print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    settings = load_settings(args.config_dir)
    console = ConsoleSink(verbose=args.verbose or settings.verbose)
    sink = TeeSink([console, FileSink(args.log_file)]) if args.log_file else console

    missing = [a for a in archives if not Path(a).is_file()]
    if missing:
        for m in missing:
            sink.error(f"File not found: {m}")
        ap.print_usage(sys.stderr)
        return 1

    runner = SolutionRunner(settings, sink=sink)
    report: RunReport = runner.execute(
        archives,
        timeout=args.timeout if args.timeout is not None else pos_timeout,
        results_path=args.results or pos_results,
    )
    if args.json:
        print(json.dumps(report.as_dict(), indent=2))
    if report.status is not RunStatus.SUCCESS:
        sink.error(f"Run finished with status {report.status.value}: {report.message}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
