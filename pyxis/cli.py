from __future__ import annotations

"""Command-line interface for pyxis.

This module translates CLI flags into runtime options, executes scans through
`pyxis.core` and hands the collected outcomes to the output writers.
"""

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .cli_parts.status import render_runtime_status_panel as _render_runtime_status_panel
from .core import Runner, _run_coro_sync
from .exceptions import OptionsError
from .options import Options, load_env_settings
from .output import console, err_console, output, print_json_output, print_result
from .result import ResultStore, ScanOutcome
from .storage import export_results
from .version import __version__


def _split_targets(values: Optional[List[str]]) -> List[str]:
    """Flatten repeated/comma-separated `-t` values, keeping first-seen order."""
    targets: List[str] = []
    seen: set[str] = set()
    for value in values or []:
        for part in str(value).split(","):
            target = part.strip()
            if not target or target in seen:
                continue
            seen.add(target)
            targets.append(target)
    return targets


def _count_hosts_in_file(file_path: str) -> int:
    with Path(file_path).open("r", encoding="utf-8", errors="replace") as fh:
        return sum(1 for line in fh if line.strip() and not line.strip().startswith("#"))


def _read_stdin_targets() -> List[str]:
    return [line.strip() for line in sys.stdin.read().splitlines() if line.strip()]


def _build_settings(args: argparse.Namespace, env: Dict[str, Any]) -> Dict[str, Any]:
    """Layer CLI flags over environment settings; defaults live in `Options`."""
    settings: Dict[str, Any] = dict(env)
    overrides = {
        "retries": args.retries,
        "timeout": args.timeout,
        "rate_limit": args.rate,
        "proxy": args.proxy,
        "dns_server": args.dns,
        "useragent": args.useragent,
    }
    for key, value in overrides.items():
        if value is not None:
            settings[key] = value
    settings.update(
        {
            "hosts": list(args.target or []),
            "hosts_file": args.target_file,
            "cdn_only": args.cdn,
            "lb_heuristic": not args.no_lb_heuristic,
            "output": args.output,
            "silent": args.silent,
            "clear": args.clear,
        }
    )
    return settings


def _target_label(options: Options) -> str:
    hosts = options.hosts
    if hosts:
        label = ", ".join(hosts[:3]) + (" ..." if len(hosts) > 3 else "")
        if options.hosts_file:
            label += f" + {options.hosts_file}"
        return label
    return str(options.hosts_file or "-")


def _run_with_rich_progress(runner: Runner, total: int, clear: bool) -> ResultStore:
    """Execute the scan with a Rich progress bar fed by the result callback."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Scanning hosts", total=max(total, 1))

        def cb(outcome: ScanOutcome) -> None:
            print_result(outcome, clear=clear)
            progress.advance(task_id)

        runner.on_result = cb
        return _run_coro_sync(runner.run())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyxis",
        description=(
            f"pyxis v.{__version__} - Web service discovery and fingerprinting\n"
            "CLI options > PYXIS_* environment (.env) > built-in defaults."
        ),
    )
    target_group = parser.add_argument_group("Target")
    target_group.add_argument(
        "-t",
        "--target",
        action="append",
        help="Target host, host:port or URL. Repeatable, comma-separated values accepted.",
    )
    target_group.add_argument("-T", "--target-file", dest="target_file", help="File with targets, one per line.")

    mode_group = parser.add_argument_group("Scan Modes")
    mode_group.add_argument("--cdn", help="Only resolve hosts and classify CDN/load balancer.", action="store_true")
    mode_group.add_argument(
        "--no-lb-heuristic",
        dest="no_lb_heuristic",
        help="Do not label two-address answers as a load balancer.",
        action="store_true",
    )

    runtime_group = parser.add_argument_group("Runtime Overrides (Advanced)")
    runtime_group.add_argument("--retries", help="Retries per request (default 1).", type=int, required=False)
    runtime_group.add_argument("--timeout", help="Timeout in seconds (default 10).", type=float, required=False)
    runtime_group.add_argument("--rate", help="Maximum new scans per second (default: by CPU count).", type=int, required=False)
    runtime_group.add_argument("--proxy", help="Proxy URL: http://, https:// or socks5://.", required=False)
    runtime_group.add_argument("--dns", help="DNS server used for CDN classification.", required=False)
    runtime_group.add_argument("--useragent", help="User-Agent string or 'random'.", required=False)

    output_group = parser.add_argument_group("Output")
    output_group.add_argument("-o", "--output", help="Write alive hosts to file (.txt, .csv or .json).")
    output_group.add_argument("--silent", help="Silent mode (hide banner, progress and summary).", action="store_true")
    output_group.add_argument("--clear", help="Hide failed hosts in the live output.", action="store_true")
    output_group.add_argument("--json", help="JSON-only output (forces --silent).", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint.

    This function is responsible for argument parsing, config layering
    (CLI > environment > built-in defaults), the scan run and result handling.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.json:
        args.silent = True

    args.target = _split_targets(args.target)
    if not args.target and not args.target_file and not sys.stdin.isatty():
        lines = _read_stdin_targets()
        if len(lines) == 1 and Path(lines[0]).is_file():
            args.target_file = lines[0]
        else:
            args.target = _split_targets(lines)

    if not args.target and not args.target_file:
        parser.print_help(sys.stderr)
        return

    settings = _build_settings(args, load_env_settings())
    try:
        options = Options(**settings).validate()
        runner = Runner(options)
    except OptionsError as exc:
        err_console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    total = len(options.hosts)
    if options.hosts_file:
        try:
            total += _count_hosts_in_file(options.hosts_file)
        except OSError as exc:
            err_console.print(f"[red]Cannot read file:[/red] {options.hosts_file} ({exc})")
            sys.exit(1)

    if not args.silent:
        _render_runtime_status_panel(
            options,
            target=_target_label(options),
            target_count=total,
            useragent=runner.transport.headers.get("User-Agent", "-"),
            fingerprint_workers=runner.dispatcher.max_workers,
        )

    start_time = datetime.now()
    if args.json:
        store = _run_coro_sync(runner.run())
    elif args.silent:
        runner.on_result = lambda outcome: print_result(outcome, clear=args.clear)
        store = _run_coro_sync(runner.run())
    else:
        store = _run_with_rich_progress(runner, total, clear=args.clear)
    elapsed = datetime.now() - start_time

    results = store.results()
    if options.output:
        try:
            written = export_results(results, options.output)
        except OSError as exc:
            err_console.print(f"[red]Could not write output file:[/red] {options.output} ({exc})")
            sys.exit(1)
        if not args.silent:
            console.print(f"[green]Results saved to[/green] {written}")

    if args.json:
        print_json_output(results)
        return
    if not args.silent:
        output(results, elapsed)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted[/yellow]")
        try:
            sys.exit(0)
        except SystemExit:
            os._exit(0)
