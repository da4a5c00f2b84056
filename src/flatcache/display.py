"""Rich rendering of cache contents for debugging."""

import time
from datetime import datetime
from typing import Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from flatcache.entries import CacheEntry, is_timestamp_expired

MAX_VALUE_WIDTH = 60


def _short_repr(value) -> str:
    text = repr(value)
    if len(text) > MAX_VALUE_WIDTH:
        text = text[: MAX_VALUE_WIDTH - 3] + "..."
    return text


def render_entries(
    entries: Dict[str, CacheEntry], title: str = "Cache", now: Optional[float] = None
) -> Table:
    """Build a table with one row per cache entry."""
    if now is None:
        now = time.time()

    table = Table(title=f"{title} ({len(entries)})")
    table.add_column("Key", style="cyan")
    table.add_column("Stored", style="dim")
    table.add_column("TTL (s)", justify="right")
    table.add_column("Permanent", justify="center")
    table.add_column("Status")
    table.add_column("Value")

    for key, entry in entries.items():
        if is_timestamp_expired(entry.stored_at, entry.ttl_seconds, now):
            status = "[red]expired[/red]"
        else:
            status = "[green]fresh[/green]"
        table.add_row(
            escape(key),
            datetime.fromtimestamp(entry.stored_at).strftime("%Y-%m-%d %H:%M:%S"),
            f"{entry.ttl_seconds:g}",
            "✓" if entry.permanent else "",
            status,
            escape(_short_repr(entry.value)),
        )

    return table


def print_entries(
    entries: Dict[str, CacheEntry],
    title: str = "Cache",
    console: Optional[Console] = None,
) -> None:
    """Print cache entries as a table."""
    console = console or Console()
    if not entries:
        console.print(f"[yellow]{title}: no entries[/yellow]")
        return
    console.print(render_entries(entries, title))
