"""Command-line interface for losscheck."""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from .batch import BatchRunner
from .config import AnalysisConfig, ConfigurationError, config_from_dict, load_config
from .report import build_json, write_report
from .types import AnalysisResult, BatchReport, Verdict

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({
    '.mp3', '.mp2', '.mp1', '.flac', '.wav', '.aif', '.aiff', '.ogg', '.oga', '.opus',
    '.m4a', '.mp4', '.aac', '.wma', '.alac',
})

EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130


class _Parser(argparse.ArgumentParser):
    """Usage errors exit with the configuration-error code."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_CONFIG_ERROR, f"{self.prog}: error: {message}\n")


def collect_paths(inputs: Iterable[str]) -> List[Path]:
    """Expand files and directories into a deduplicated list of files.

    Directories are searched recursively for supported extensions, in sorted
    order.  Files named explicitly are kept whatever their extension; missing
    paths are kept too so they show up as errors in the results.
    """
    seen = set()
    paths: List[Path] = []

    def add(path: Path) -> None:
        key = path.resolve()
        if key not in seen:
            seen.add(key)
            paths.append(path)

    for raw in inputs:
        path = Path(raw)
        if path.is_dir():
            for child in sorted(path.rglob('*')):
                if child.is_file() and child.suffix.lower() in SUPPORTED_EXTENSIONS:
                    add(child)
        else:
            add(path)
    return paths


def build_config(args) -> AnalysisConfig:
    overrides = {
        'jobs': getattr(args, 'jobs', None),
        'transcode_threshold': getattr(args, 'threshold', None),
        'spectral': False if getattr(args, 'no_spectral', False) else None,
    }
    if getattr(args, 'config', None):
        return load_config(args.config, **overrides)
    return config_from_dict({}, **overrides)


def _format_line(result: AnalysisResult) -> str:
    if result.verdict is Verdict.ERROR:
        return f"{'ERROR':<9}   -   {result.path}: {result.error}"
    flags = ', '.join(str(f) for f in result.flags) or '-'
    return (
        f"{result.verdict.value:<9} {result.combined_score:>3}%  "
        f"{result.bitrate:>4}k  {result.path}  [{flags}]"
    )


def _print_text(report: BatchReport) -> None:
    summary = report.summary
    for result in report.results:
        print(_format_line(result))
    print(f"\n{'='*60}")
    print(f"  Files: {summary.total}  OK: {summary.ok}  Suspect: {summary.suspect}  "
          f"Transcode: {summary.transcode}  Error: {summary.error}")
    if report.cancelled:
        print(f"  Cancelled: {report.skipped} files not analyzed")
    print(f"{'='*60}")


def analyze_command(args):
    """Analyze files command."""
    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    paths = collect_paths(args.paths)
    if not paths:
        print("Error: No audio files found", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    report = BatchRunner(config).run(paths)

    if args.json:
        payload = build_json(report.results, report.summary)
        payload['cancelled'] = report.cancelled
        payload['skipped'] = report.skipped
        print(json.dumps(payload, indent=2))
    elif not args.quiet:
        _print_text(report)

    if args.output:
        try:
            write_report(args.output, report.results, report.summary)
        except OSError as e:
            print(f"Error: Cannot write report {args.output}: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)
        if not args.json and not args.quiet:
            print(f"Report saved to: {Path(args.output).resolve()}")

    if report.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(report.summary.exit_code)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="losscheck",
        description="Detect lossy-to-lossy and lossy-to-lossless audio transcodes",
    )
    parser.add_argument("paths", nargs="+", help="Audio files or directories to analyze")
    parser.add_argument("-j", "--jobs", type=int, help="Number of worker threads (default: CPU count)")
    parser.add_argument("--no-spectral", action="store_true", help="Skip spectral analysis (binary only)")
    parser.add_argument("-t", "--threshold", type=int, help="Combined score at which a file is a TRANSCODE (default: 65)")
    parser.add_argument("-o", "--output", help="Write a report (.csv, .json or .html)")
    parser.add_argument("-c", "--config", help="JSON configuration file")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only print errors")
    parser.set_defaults(func=analyze_command)
    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        level = logging.INFO
    elif args.quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
