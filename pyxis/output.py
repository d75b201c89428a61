from __future__ import annotations

"""Terminal rendering helpers for pyxis.

This module contains presentation-only logic: the live line printed as each
host finishes, the summary table shown after a scan and raw JSON output.
It does not perform network or file operations.
"""

import json
import sys
from datetime import timedelta
from typing import Any, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .core import fmt_td
from .result import ScanOutcome

console = Console()
err_console = Console(stderr=True)


# Shared layout constants.
SUMMARY_URL_WIDTH = 34
SUMMARY_CODE_WIDTH = 6
SUMMARY_LENGTH_WIDTH = 9
SUMMARY_IP_WIDTH = 16
SUMMARY_CDN_WIDTH = 18
TITLE_PREVIEW_LEN = 60


def _table_width() -> int:
    try:
        return max(80, int(console.size.width) - 2)
    except Exception:
        return 100


def _new_table(
    *,
    title: Optional[str] = None,
    box_style: Any = box.SIMPLE,
    show_header: bool = True,
    header_style: Optional[str] = None,
) -> Table:
    return Table(
        title=title,
        box=box_style,
        show_header=show_header,
        header_style=header_style,
        title_justify="left",
        width=_table_width(),
        expand=False,
        pad_edge=False,
    )


def _fmt_status(code: Any) -> str:
    if not code:
        return "[red]-[/red]"
    try:
        value = int(code)
    except Exception:
        return str(code)
    if value >= 400:
        return f"[red]{value}[/red]"
    if value >= 300:
        return f"[yellow]{value}[/yellow]"
    return f"[green]{value}[/green]"


def _fmt_optional(value: Any, style: Optional[str] = None) -> str:
    if value in (None, ""):
        return "-"
    text = escape(str(value))
    return f"[{style}]{text}[/{style}]" if style else text


def _shorten(text: str, limit: int = TITLE_PREVIEW_LEN) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


def _format_ips_for_cell(value: str) -> str:
    ips = [ip.strip() for ip in (value or "").split(",") if ip.strip()]
    if not ips:
        return "-"
    lines: List[str] = []
    current = ""
    max_len = max(8, SUMMARY_IP_WIDTH)
    for ip in ips:
        if not current:
            current = ip
            continue
        candidate = f"{current}, {ip}"
        if len(candidate) <= max_len:
            current = candidate
            continue
        lines.append(current)
        current = ip
    if current:
        lines.append(current)
    return "\n".join(lines)


def format_result_line(outcome: ScanOutcome) -> str:
    """Rich markup for the one-line live view of a finished host."""
    if not outcome.ok:
        return f"[red]{escape('[failed]')}[/red] {escape(outcome.host or outcome.full_url)}"

    if not outcome.status_code:
        # CDN-only mode: nothing was fetched.
        parts = [escape(outcome.full_url), f"[[white]{escape(outcome.ip or '-')}[/white]]"]
        if outcome.cdn:
            parts.append(f"[[magenta]{escape(outcome.cdn)}[/magenta]]")
        return " ".join(parts)

    parts = [
        escape(outcome.full_url),
        f"[{_fmt_status(outcome.status_code)}]",
        f"[[cyan]{escape(_shorten(outcome.title)) or '-'}[/cyan]]",
        f"[{outcome.content_length}]",
    ]
    if outcome.fingerprint:
        parts.append(f"[[bold yellow]{escape(outcome.fingerprint)}[/bold yellow]]")
    if outcome.favicon_hash:
        parts.append(f"[[blue]{escape(outcome.favicon_hash)}[/blue]]")
    if outcome.ip:
        parts.append(f"[[white]{escape(outcome.ip)}[/white]]")
    if outcome.cdn:
        parts.append(f"[[magenta]{escape(outcome.cdn)}[/magenta]]")
    return " ".join(parts)


def print_result(outcome: ScanOutcome, clear: bool = False) -> None:
    """Print the live line for one host; failures are hidden with `clear`."""
    if clear and not outcome.ok:
        return
    console.print(format_result_line(outcome), highlight=False, soft_wrap=True)


def output(results: Optional[Iterable[ScanOutcome]], elapsed: Optional[timedelta] = None) -> None:
    """Render the compact summary table shown after a scan."""
    items = list(results or [])
    if not items:
        err_console.print("[yellow]No results to display.[/yellow]")
        return

    ok_items = [item for item in items if item.ok]
    failed = len(items) - len(ok_items)

    table = _new_table(box_style=box.SIMPLE_HEAVY, show_header=True, header_style="bold cyan")
    table.add_column("URL", style="cyan", width=SUMMARY_URL_WIDTH, min_width=SUMMARY_URL_WIDTH, max_width=SUMMARY_URL_WIDTH, no_wrap=True, overflow="ellipsis")
    table.add_column("Code", justify="center", width=SUMMARY_CODE_WIDTH, min_width=SUMMARY_CODE_WIDTH, max_width=SUMMARY_CODE_WIDTH, no_wrap=True)
    table.add_column("Length", justify="right", width=SUMMARY_LENGTH_WIDTH, min_width=SUMMARY_LENGTH_WIDTH, max_width=SUMMARY_LENGTH_WIDTH, no_wrap=True)
    table.add_column("Title", overflow="fold", no_wrap=False)
    table.add_column(
        "IP",
        style="white",
        width=SUMMARY_IP_WIDTH,
        min_width=SUMMARY_IP_WIDTH,
        max_width=SUMMARY_IP_WIDTH,
        no_wrap=False,
        overflow="fold",
    )
    table.add_column("CDN", width=SUMMARY_CDN_WIDTH, min_width=SUMMARY_CDN_WIDTH, max_width=SUMMARY_CDN_WIDTH, no_wrap=True, overflow="ellipsis")

    for item in sorted(ok_items, key=lambda o: o.full_url):
        table.add_row(
            escape(item.full_url),
            _fmt_status(item.status_code),
            str(item.content_length) if item.status_code else "-",
            _fmt_optional(_shorten(item.title)),
            _format_ips_for_cell(item.ip),
            _fmt_optional(item.cdn, style="magenta"),
        )

    console.print(table)
    summary = f"[bold]Hosts:[/bold] {len(items)}  [bold]Alive:[/bold] {len(ok_items)}"
    if failed:
        summary += f"  [bold]Failed:[/bold] [red]{failed}[/red]"
    summary += f"  [bold]Elapsed:[/bold] {fmt_td(elapsed)}"
    console.print(Panel.fit(summary, border_style="cyan"))


def print_json_output(results: Optional[Iterable[ScanOutcome]]) -> None:
    payload = [item.to_dict() for item in (results or [])]
    try:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
        sys.stdout.write("\n")
    except BrokenPipeError:
        # Preserve CLI behavior on piped output (e.g. `| head`) without traceback noise.
        return
