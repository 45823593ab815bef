"""
Status display for `vcce status`.

This module is lazy-loaded only when the status command is used.
"""

from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

console = Console()


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def show_status(address: str, health: Optional[Dict[str, Any]], ai: Optional[Dict[str, Any]]) -> None:
    """
    Print daemon health and AI status as a table.

    Args:
        address: host:port the daemon answered on
        health: `health` response data
        ai: `aiStatus` response data
    """
    health = health or {}
    ai = ai or {}

    table = Table(title=f"VCCE daemon on {address}", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row("Uptime", _format_uptime(health.get("uptime_seconds", 0)))
    table.add_row("Running processes", str(health.get("running_processes", 0)))
    table.add_row("Cached contexts", str(health.get("cached_contexts", 0)))
    ttl = health.get("context_ttl") or 0
    table.add_row("Context TTL", f"{ttl:g}s" if ttl else "never expires")
    table.add_row("Model", str(ai.get("model", "-")))
    if ai.get("hasApiKey"):
        table.add_row("API key", "[green]configured[/green]")
    else:
        table.add_row("API key", "[red]missing[/red] (set MISTRAL_API_KEY or send setApiKey)")
    table.add_row("Pending patches", str(ai.get("pendingPatches", 0)))

    console.print(table)
