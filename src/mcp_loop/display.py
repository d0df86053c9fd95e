# display.py
# All terminal output for the MCP loop.
#
# This module owns presentation entirely. The loop, planner and executor
# never format strings for the terminal — they call named functions here.
#
# Colour language:
#   cyan    — routing / loop phases
#   blue    — model calls
#   yellow  — plan caps, warnings and cache decisions
#   green   — success / confirmed
#   red     — failures and rejected plans
#   magenta — tool activity and user-facing notifications

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from mcp_loop.models import ActionResult, PlannedAction

console = Console()


def set_quiet(quiet: bool) -> None:
    """Silence (or restore) all output from this module."""
    console.quiet = quiet


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _preview(value: Any, max_len: int = 80) -> str:
    if isinstance(value, str):
        return _mono(value, max_len)
    return _mono(json.dumps(value, default=str), max_len)


# ---------------------------------------------------------------------------
# Loop entry
# ---------------------------------------------------------------------------


def banner(planner_model: str, tool_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]MCP Loop[/bold cyan]\n"
            "[dim]Plan with a model, execute with a registry[/dim]\n\n"
            f"[dim]Planner model :[/dim] [white]{planner_model}[/white]\n"
            f"[dim]Tools         :[/dim] [white]{tool_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def request_received(mode: str, session_id: str | None, message: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{message}[/white]",
            title=_label(f"MODE: {mode.upper()}", "cyan"),
            subtitle=f"[dim]session: {session_id or 'none'}[/dim]",
            border_style="cyan",
            padding=(0, 2),
        )
    )


def context_loaded(session_id: str | None, history_count: int, action_count: int) -> None:
    if session_id is None:
        console.print(_label("CONTEXT", "cyan"), "[cyan] Loaded without session history.[/cyan]")
        return
    console.print(
        _label("CONTEXT", "cyan"),
        f"[cyan] Session history loaded:[/cyan] [white]{history_count}[/white] message(s), "
        f"[white]{action_count}[/white] prior action(s).",
    )


def warning(what: str, error: str) -> None:
    """Best-effort failure: reported, never raised."""
    console.print(f"  [bold yellow]⚠ {what}[/bold yellow]  [dim]{_mono(error, 160)}[/dim]")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def planning_start(tool_count: int, discovery_mode: bool) -> None:
    console.print()
    mode = " [yellow](discovery mode)[/yellow]" if discovery_mode else ""
    console.print(
        _label("PLANNER", "blue"),
        f"[blue] → Asking the model to plan over {tool_count} eligible tool(s)…[/blue]{mode}",
    )


def plan_parsed(plan: list[PlannedAction]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("Tool", style="bold white", width=28)
    table.add_column("Args", style="dim white", width=32)
    table.add_column("Reason", style="white")

    for index, step in enumerate(plan, start=1):
        table.add_row(
            str(index),
            step.tool,
            _mono(json.dumps(step.args, default=str), 30),
            step.reason or "",
        )

    console.print(
        Panel(
            table,
            title=_label("PLANNER: PLAN PARSED", "cyan"),
            subtitle=f"[dim]{len(plan)} step(s)[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def plan_truncated(requested: int, allowed: int) -> None:
    console.print(
        f"  [yellow]↳ Plan capped:[/yellow] [white]{requested}[/white] step(s) requested, "
        f"[white]{allowed}[/white] kept."
    )


def plan_rejected(error_type: str, message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]{message}[/bold red]",
            title=_label(f"PLAN REJECTED: {error_type}", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def fallback_plan(reason: str, size: int) -> None:
    console.print(
        Panel(
            f"[white]Model planning failed: {_mono(reason, 160)}[/white]\n"
            f"[dim]Using the rule-based plan ({size} step(s)) instead.[/dim]",
            title=_label("PLANNER: FALLBACK", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Execution loop
# ---------------------------------------------------------------------------


def execution_start(total: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]EXECUTION LOOP — {total} step(s)[/cyan]", style="cyan"))


def step_start(index: int, total: int, tool: str, reason: str | None) -> None:
    console.print()
    console.print(
        f"[bold cyan]  STEP [{index + 1}/{total}][/bold cyan]  [bold white]{tool}[/bold white]"
        + (f"  [dim]{_mono(reason, 100)}[/dim]" if reason else "")
    )


def cache_hit(tool: str, request_hash: str) -> None:
    console.print(
        f"  [bold yellow]↺ Reused cached result[/bold yellow] [dim]{tool} {request_hash[:16]}…[/dim]"
    )


def cache_rejected(tool: str, reason: str) -> None:
    console.print(f"  [yellow]↳ Cached entry for {tool} ignored:[/yellow] [dim]{reason}[/dim]")


def step_succeeded(tool: str, output: Any) -> None:
    console.print(f"  [bold green]✓ {tool}[/bold green]  [white]{_preview(output, 120)}[/white]")


def step_failed(tool: str, error: str) -> None:
    console.print(f"  [bold red]✗ {tool}[/bold red]  [white]{_mono(error, 200)}[/white]")


def notification(session_id: str, message: str) -> None:
    console.print(
        _label("NOTIFY", "magenta"),
        f"[magenta] {message}[/magenta] [dim]({session_id})[/dim]",
    )


def execution_summary(results: list[ActionResult]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Tool", width=28)
    table.add_column("Status", justify="center", width=10)
    table.add_column("Output / Error", style="dim white")

    for index, result in enumerate(results, start=1):
        if not result.success:
            status = "[bold red]✗[/bold red]"
        elif result.reused:
            status = "[bold yellow]↺[/bold yellow]"
        else:
            status = "[bold green]✓[/bold green]"
        detail = result.error if not result.success else _preview(result.output, 60)
        table.add_row(str(index), result.tool, status, detail or "")

    succeeded = sum(1 for r in results if r.success)
    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            subtitle=f"[dim]{succeeded}/{len(results)} succeeded[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------


def final_summary(summary: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{summary}[/white]",
            title=_label("SUMMARY", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()
