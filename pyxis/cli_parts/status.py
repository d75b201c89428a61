from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich import box
from rich.columns import Columns
from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from ..options import Options
from ..output import console
from ..version import __version__


def _compact_home(path: Path) -> str:
    home = Path.home().resolve()
    resolved = path.expanduser().resolve()
    try:
        rel = resolved.relative_to(home)
        return f"~/{rel.as_posix()}" if str(rel) != "." else "~"
    except ValueError:
        return str(resolved)


def _enabled(flag: bool) -> str:
    return "✅ enabled" if flag else "❌ disabled"


def render_runtime_status_panel(
    options: Options,
    target: str,
    target_count: Optional[int],
    useragent: str,
    fingerprint_workers: int,
) -> None:
    """Render the startup header with runtime settings and scan switches."""
    term_width = console.size.width
    runtime_width = 80
    half_width = 40
    card_height = 12

    key_col_width = 11
    value_col_width = runtime_width - key_col_width - 6

    def _fit_value(value: object) -> str:
        text = str(value)
        # Keep cells on one line so all cards remain visually aligned.
        max_len = max(20, value_col_width)
        if len(text) <= max_len:
            return text
        if max_len <= 3:
            return "." * max_len
        return f"{text[: max_len - 3]}..."

    source = _compact_home(Path(options.hosts_file)) if options.hosts_file else "command line"
    proxy = options.proxy_config
    proxy_text = f"{proxy.kind.value} {proxy.address}" if proxy.url else "none"

    status = Table(box=box.MINIMAL, show_header=False, pad_edge=False, expand=False)
    status.add_column("Key", width=key_col_width, no_wrap=True)
    status.add_column("Value", width=value_col_width, no_wrap=True, overflow="crop")
    status.add_row("Target", _fit_value(target))
    status.add_row("Source", _fit_value(source))
    status.add_row("Hosts", _fit_value(target_count if target_count is not None else "-"))
    status.add_row("Timeout", _fit_value(options.timeout))
    status.add_row("Retries", _fit_value(options.retries))
    status.add_row("Rate", _fit_value(f"{options.rate_limit}/s"))
    status.add_row("Proxy", _fit_value(proxy_text))
    status.add_row("DNS", _fit_value(options.dns_server or "system"))
    status.add_row("User-Agent", _fit_value(useragent))

    modes = Table(title="Scans", box=box.SIMPLE_HEAVY)
    modes.add_column("Mode", style="cyan")
    modes.add_column("Status", style="white")
    modes.add_row("HTTP probe", _enabled(not options.cdn_only))
    modes.add_row("CDN only", _enabled(options.cdn_only))
    modes.add_row("LB heuristic", _enabled(options.lb_heuristic))

    out = Table(title="Output", box=box.SIMPLE_HEAVY)
    out.add_column("Setting", style="cyan")
    out.add_column("Value", style="white")
    out.add_row("File", options.output or "-")
    out.add_row("Hide failed", "yes" if options.clear else "no")
    out.add_row("FP workers", str(fingerprint_workers))

    # Fixed dimensions: Runtime 80, Scans 40 + Output 40.
    status_panel = Panel(status, title="Runtime", border_style="cyan", width=runtime_width, height=card_height)
    modes_panel = Panel(modes, title="Scans", border_style="cyan", width=half_width, height=card_height - 3)
    out_panel = Panel(out, title="Output", border_style="cyan", width=half_width, height=card_height - 3)

    if term_width >= 90:
        content = Group(status_panel, Columns([modes_panel, out_panel], equal=True, expand=False, padding=0))
    else:
        content = Group(status_panel, modes_panel, out_panel)

    outer_width = runtime_width + 4
    console.print(Panel(content, title=f"Pyxis v{__version__}", border_style="blue", width=outer_width, expand=False))
