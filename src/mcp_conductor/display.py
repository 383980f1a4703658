# display.py
# All terminal output for the conductor.
#
# This module owns presentation entirely. The engine and executor never
# format strings; they call named functions here. Diagnostics go through
# logging (stderr), this is the user-facing narrative on stdout.
#
# Colour language:
#   cyan    : routing and pipeline events
#   blue    : Oracle calls
#   yellow  : retries, fallbacks, recovery
#   green   : success
#   red     : failures and halts

import json

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from mcp_conductor.content import to_jsonable, to_text
from mcp_conductor.models import (
    RecoveryPlan,
    RoutingDecision,
    StepResult,
    ToolExecution,
    UsageStats,
    WorkflowResult,
)

console = Console()


def use_stderr() -> None:
    """Send the narrative to stderr, for when stdout carries a protocol."""
    global console
    console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    value = value.replace("\n", " ")
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def banner(model: str, oracle_enabled: bool) -> None:
    oracle = (
        f"[white]{model}[/white]"
        if oracle_enabled
        else "[yellow]disabled[/yellow] [dim](keyword routing, summary synthesis)[/dim]"
    )
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]MCP Conductor[/bold cyan]\n"
            "[dim]Multi-provider tool orchestration with retry and recovery[/dim]\n\n"
            f"[dim]Oracle :[/dim] {oracle}",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def providers_connected(info: dict[str, dict]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Provider", style="bold white")
    table.add_column("Tools", justify="right", width=6)
    table.add_column("Description", style="dim white")

    for provider_id, details in info.items():
        table.add_row(provider_id, str(details["tool_count"]), details["description"])

    if not info:
        console.print(
            Panel(
                "[bold red]No providers connected.[/bold red]\n"
                "[dim]Check provider commands and required environment variables.[/dim]",
                title=_label("PROVIDERS", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )
        return

    console.print(
        Panel(
            table,
            title=_label(f"PROVIDERS: {len(info)} CONNECTED", "cyan"),
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def request_received(request: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{request}[/white]",
            title=_label("REQUEST", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def plan_routed(steps: list[RoutingDecision]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("Tool", style="bold white")
    table.add_column("Conf.", justify="right", width=6)
    table.add_column("Params", style="dim white", width=32)
    table.add_column("Reasoning", style="white")

    for index, step in enumerate(steps):
        table.add_row(
            str(index + 1),
            step.selected_tool,
            f"{step.confidence:.2f}",
            _mono(json.dumps(to_jsonable(step.parameters)), 30),
            _mono(step.reasoning, 60),
        )

    console.print(
        Panel(
            table,
            title=_label("ROUTER: PLAN", "cyan"),
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def execution_start(total: int, parallel: bool) -> None:
    mode = "parallel" if parallel else "sequential"
    console.print()
    console.print(Rule(f"[cyan]EXECUTION: {total} step(s), {mode}[/cyan]", style="cyan"))


def step_start(index: int, total: int, tool: str) -> None:
    console.print()
    console.print(f"[bold cyan]  STEP [{index + 1}/{total}][/bold cyan]  [white]{tool}[/white]")


def window_start(start: int, size: int, total: int) -> None:
    console.print()
    console.print(
        f"[bold cyan]  WINDOW[/bold cyan]  [white]steps {start + 1}-{start + size} of {total}[/white]"
    )


def step_result(result: StepResult) -> None:
    if result.success:
        console.print(
            f"  [bold green]✓ {result.tool}[/bold green]  [dim]{result.execution_time_ms}ms[/dim]"
            f"  [white]{_mono(to_text(result.result), 100)}[/white]"
        )
    else:
        console.print(
            f"  [bold red]✗ {result.tool}[/bold red]  [dim]{result.execution_time_ms}ms[/dim]"
            f"  [red]{_mono(result.error or 'Unknown error', 100)}[/red]"
        )


def retry_scheduled(tool: str, attempt: int, total: int, error: str) -> None:
    console.print(
        f"  [yellow]↻ Retrying {tool}[/yellow] [dim yellow]attempt {attempt}/{total} failed:[/dim yellow]"
        f" [dim]{_mono(error, 80)}[/dim]"
    )


def fallback_started(original: str, fallback: str) -> None:
    console.print(
        f"  [yellow]⇄ Falling back[/yellow] [white]{original}[/white] → [bold white]{fallback}[/bold white]"
    )


def recovery_applied(attempt: int, max_attempts: int, plan: RecoveryPlan) -> None:
    if plan.modified_steps is not None:
        detail = "Swapping failing tools for fallbacks and re-running from the first step."
    else:
        detail = f"Re-running from step {(plan.restart_from_step or 0) + 1}."
    console.print()
    console.print(
        Panel(
            f"[bold yellow]Workflow failed; recovery attempt {attempt}/{max_attempts}.[/bold yellow]\n"
            f"[dim]{detail}[/dim]",
            title=_label("RECOVERY", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def synthesis_start(oracle: bool) -> None:
    console.print()
    console.print(Rule("[cyan]SYNTHESIS[/cyan]", style="cyan"))
    if oracle:
        console.print("[blue]  Passing step results to the Oracle for the final response…[/blue]")
    else:
        console.print("[cyan]  Summarizing step results…[/cyan]")


def execution_summary(results: list[StepResult]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Tool")
    table.add_column("OK", justify="center", width=4)
    table.add_column("Retries", justify="right", width=8)
    table.add_column("Output", style="dim white")

    for result in results:
        ok = "[bold green]✓[/bold green]" if result.success else "[bold red]✗[/bold red]"
        output = to_text(result.result) if result.success else (result.error or "")
        table.add_row(
            str(result.step_index + 1),
            result.tool,
            ok,
            str(result.metadata.retry_count),
            _mono(output, 60),
        )

    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def final_result(result: WorkflowResult) -> None:
    meta = result.metadata
    color = "green" if result.success else "red"
    console.print()
    console.print(
        Panel(
            f"[white]{result.message}[/white]",
            title=_label("RESULT" if result.success else "FAILED", color),
            subtitle=(
                f"[dim]{meta.successful_steps}/{meta.total_steps} steps · "
                f"{meta.elapsed_ms}ms · recovery {meta.recovery_attempts} · "
                f"confidence {meta.confidence:.2f}[/dim]"
            ),
            border_style=color,
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


def tool_execution_finished(execution: ToolExecution) -> None:
    """Usage-tracker listener; prints one dim line per finished call."""
    mark = "[green]✓[/green]" if execution.success else "[red]✗[/red]"
    detail = execution.result_summary if execution.success else execution.error
    console.print(
        f"    [dim]{mark} {execution.tool} {execution.duration_ms}ms {_mono(detail or '', 60)}[/dim]"
    )


def usage_stats(stats: UsageStats) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("Tool")
    table.add_column("Calls", justify="right", width=6)
    table.add_column("Avg ms", justify="right", width=8)

    for usage in stats.most_used_tools:
        table.add_row(usage.tool, str(usage.count), f"{usage.avg_duration_ms:.0f}")

    console.print(
        Panel(
            table,
            title="[dim]USAGE[/dim]",
            subtitle=(
                f"[dim]{stats.total_executions} calls · {stats.successful_executions} ok · "
                f"{stats.failed_executions} failed · avg {stats.average_duration_ms:.0f}ms[/dim]"
            ),
            border_style="dim",
            padding=(0, 1),
        )
    )
