"""
Cortex Review CLI - run challenge and review sessions from the terminal.

Usage:
    cortex-review run items.json                  # Timed challenge (30s per question)
    cortex-review run items.json --mode untimed   # Review session with difficulty ratings
    cortex-review run items.json -o report.json   # Save the result report
    cortex-review schedule 8 10 --stage 2         # Preview the next review date
    cortex-review replay report.json              # Re-check a challenge score
"""

from __future__ import annotations

import asyncio
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table
from rich.text import Text

from config import Settings, get_settings
from src.review import (
    Answer,
    ResultReport,
    ReviewEngineError,
    ReviewScheduler,
    SessionEngine,
    SessionItem,
    SessionMode,
    SessionPhase,
    load_session_items,
)

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="cortex-review",
    help="Cortex Review - timed challenges and spaced review sessions",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

SKIP = "s"
TICK_WARNINGS = (10, 5)


def _configure_logging(settings: Settings, verbose: bool) -> None:
    """Route loguru output according to settings."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="1 MB")


# =============================================================================
# Rendering
# =============================================================================


def _show_item(item: SessionItem, position: int, total: int, timed: bool, time_limit: int) -> None:
    content = Text()
    content.append(f"{item.prompt}\n\n", style="bold")
    for number, option in enumerate(item.options, 1):
        content.append(f"  {number}. ", style="cyan")
        content.append(f"{option}\n")
    if timed:
        content.append(f"\n{time_limit}s on the clock", style="dim")

    title = f"[bold]Question {position}/{total}[/bold]"
    if item.topic:
        title += f" [dim]({item.topic})[/dim]"
    console.print(Panel(content, title=title, border_style="blue"))


def _show_feedback(item: SessionItem, answer: Answer) -> None:
    if answer.is_correct:
        console.print("[green]✓ Correct[/green]")
    elif answer.expired:
        console.print(f"[red]⏱ Time's up![/red] Answer: [bold]{item.correct_option}[/bold]")
    else:
        console.print(f"[red]✗ Incorrect.[/red] Answer: [bold]{item.correct_option}[/bold]")
    if item.explanation and not answer.is_correct:
        console.print(f"[dim]{item.explanation}[/dim]")


def _show_report(report: ResultReport) -> None:
    summary = Text()
    summary.append("Session Complete!\n\n", style="bold green")
    summary.append(
        f"Correct: {report.correct_count}/{report.total_items} "
        f"({report.percentage}%, grade {report.grade})\n"
    )
    if report.unanswered_count:
        summary.append(f"No answer: {report.unanswered_count}\n", style="yellow")
    summary.append(f"Average time: {report.average_time_per_item}s per question\n")

    if report.score is not None:
        summary.append(f"\nTotal score: {report.score.total_score}\n", style="bold cyan")
        summary.append(f"  Points: {report.score.base_points}\n")
        summary.append(f"  Time bonus: {report.score.time_bonus}\n")
        summary.append(f"  Combo bonus: {report.score.combo_bonus}\n")
        summary.append(f"  Max combo: {report.score.max_combo}\n")

    if report.schedule is not None:
        summary.append(
            f"\nNext review: {report.schedule.next_review_at:%Y-%m-%d %H:%M} "
            f"(stage {report.schedule.stage})\n",
            style="bold cyan",
        )

    console.print(Panel(summary, title="[bold]Results[/bold]", border_style="green"))

    table = Table(title="Breakdown", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Question")
    table.add_column("Your answer")
    table.add_column("Correct answer")
    table.add_column("Time", justify="right")
    if report.mode is SessionMode.UNTIMED:
        table.add_column("Difficulty", justify="center")

    for number, entry in enumerate(report.breakdown, 1):
        chosen = entry.chosen_option if entry.chosen_option is not None else "[dim]no answer[/dim]"
        style = "green" if entry.is_correct else "red"
        row = [
            str(number),
            entry.question,
            f"[{style}]{chosen}[/{style}]",
            entry.correct_option,
            f"{entry.time_taken}s",
        ]
        if report.mode is SessionMode.UNTIMED:
            row.append(str(entry.difficulty_rating or "-"))
        table.add_row(*row)

    console.print(table)


def _parse_choice(response: str, item: SessionItem) -> str | None:
    """Map a typed response (option number or text) to an option."""
    response = response.strip()
    if response.isdigit():
        index = int(response) - 1
        if 0 <= index < len(item.options):
            return item.options[index]
        return None
    for option in item.options:
        if option.lower() == response.lower():
            return option
    return None


# =============================================================================
# Session Runners
# =============================================================================


def _run_untimed(items: list[SessionItem], settings: Settings, stage: int) -> ResultReport | None:
    engine = SessionEngine(
        items,
        SessionMode.UNTIMED,
        schedule_policy=settings.schedule_policy(),
        stage=stage,
    )
    engine.start()

    try:
        while engine.phase is SessionPhase.ACTIVE:
            item = engine.current_item
            _show_item(item, engine.cursor + 1, len(engine.items), False, 0)

            choices = [str(n) for n in range(1, len(item.options) + 1)]
            can_skip = (
                item.id not in engine.deferred_item_ids
                and engine.cursor < len(engine.items) - 1
            )
            if can_skip:
                choices.append(SKIP)

            response = Prompt.ask("[bold]Your answer[/bold]", choices=choices)
            if response == SKIP:
                engine.skip()
                console.print("[yellow]Skipped - it will come back at the end.[/yellow]")
                continue

            answer = engine.submit_answer(item.id, _parse_choice(response, item))
            _show_feedback(item, answer)

            rating = IntPrompt.ask(
                "[bold]How difficult was this? (1 easy - 5 hard)[/bold]",
                choices=["1", "2", "3", "4", "5"],
            )
            engine.submit_difficulty_rating(item.id, rating)
            engine.advance()
    except (KeyboardInterrupt, EOFError):
        engine.cancel()
        console.print("\n[yellow]Session cancelled.[/yellow]")
        return None

    return engine.report


def _drop_stale_lines(lines: asyncio.Queue) -> None:
    """Discard answers typed for a question that already timed out (keeps end-of-input)."""
    closed = False
    while not lines.empty():
        if lines.get_nowait() is None:
            closed = True
    if closed:
        lines.put_nowait(None)


def _answer_is_stale(engine: SessionEngine, item: SessionItem, expired: asyncio.Event) -> bool:
    """True when the timer ran out on ``item`` before a typed answer was handled."""
    return (
        expired.is_set()
        or engine.phase is not SessionPhase.ACTIVE
        or engine.current_item is not item
    )


async def _run_timed(items: list[SessionItem], settings: Settings) -> ResultReport | None:
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    expired = asyncio.Event()

    def read_stdin() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # Session finished and the loop closed while input was pending
            return

    def on_tick(item_id: str, remaining: int) -> None:
        if remaining in TICK_WARNINGS:
            console.print(f"[yellow]⏱ {remaining}s left[/yellow]")

    def on_expire(answer: Answer) -> None:
        _show_feedback(engine.current_item, answer)
        expired.set()

    engine = SessionEngine(
        items,
        SessionMode.TIMED,
        scoring=settings.scoring_policy(),
        on_tick=on_tick,
        on_expire=on_expire,
    )
    threading.Thread(target=read_stdin, daemon=True).start()
    engine.start()
    stale_input = False

    try:
        while engine.phase is SessionPhase.ACTIVE:
            item = engine.current_item
            _show_item(item, engine.cursor + 1, len(engine.items), True, engine.time_limit)
            expired.clear()
            if stale_input:
                _drop_stale_lines(lines)
                stale_input = False

            while True:
                console.print("[bold]Your answer:[/bold] ", end="")
                line_task = asyncio.ensure_future(lines.get())
                expire_task = asyncio.ensure_future(expired.wait())
                done, pending = await asyncio.wait(
                    {line_task, expire_task}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()

                if expire_task in done:
                    console.print()
                    stale_input = True
                    break

                line = line_task.result()
                if _answer_is_stale(engine, item, expired):
                    console.print()
                    stale_input = True
                    break

                if line is None:
                    engine.cancel()
                    console.print("\n[yellow]Input closed - session cancelled.[/yellow]")
                    return None

                option = _parse_choice(line, item)
                if option is None:
                    console.print(f"[red]Pick a number from 1 to {len(item.options)}[/red]")
                    continue

                answer = engine.submit_answer(item.id, option)
                _show_feedback(item, answer)
                engine.advance()
                break
    except (KeyboardInterrupt, asyncio.CancelledError):
        engine.cancel()
        raise

    return engine.report


# =============================================================================
# Commands
# =============================================================================


@app.command()
def run(
    items_file: Annotated[Path, typer.Argument(help="JSON file with session items")],
    mode: Annotated[
        SessionMode, typer.Option("--mode", "-m", help="timed (challenge) or untimed (review)")
    ] = SessionMode.TIMED,
    stage: Annotated[
        int, typer.Option("--stage", min=1, help="Current review stage (untimed)")
    ] = 1,
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Write the report as JSON")
    ] = None,
) -> None:
    """Run a challenge or review session."""
    settings = get_settings()

    try:
        items = load_session_items(items_file)
        if mode is SessionMode.TIMED:
            report = asyncio.run(_run_timed(items, settings))
        else:
            report = _run_untimed(items, settings, stage)
    except FileNotFoundError:
        console.print(f"[red]File not found: {items_file}[/red]")
        raise typer.Exit(1)
    except (ReviewEngineError, ValidationError) as e:
        logger.warning(f"Session aborted: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Session cancelled.[/yellow]")
        raise typer.Exit(130)

    if report is None:
        raise typer.Exit(1)

    _show_report(report)
    if output:
        output.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"[dim]Report saved to {output}[/dim]")


@app.command()
def schedule(
    correct: Annotated[int, typer.Argument(help="Correctly answered questions")],
    total: Annotated[int, typer.Argument(help="Questions in the session")],
    stage: Annotated[int, typer.Option("--stage", min=1, help="Current review stage")] = 1,
) -> None:
    """Show when a session with this result would be reviewed next."""
    scheduler = ReviewScheduler(get_settings().schedule_policy())
    try:
        result = scheduler.schedule(correct, total, datetime.now(), prior_stage=stage)
    except (ReviewEngineError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"Accuracy: [bold]{result.accuracy:.0%}[/bold]")
    console.print(f"Stage: {stage} -> [bold]{result.stage}[/bold]")
    console.print(f"Next review: [bold cyan]{result.next_review_at:%Y-%m-%d %H:%M}[/bold cyan]")


@app.command()
def replay(
    report_file: Annotated[Path, typer.Argument(help="Report JSON written by 'run --output'")],
) -> None:
    """Recompute a challenge score from its per-question breakdown."""
    try:
        report = ResultReport.model_validate_json(report_file.read_text(encoding="utf-8"))
        replayed = report.replayed_total()
    except FileNotFoundError:
        console.print(f"[red]File not found: {report_file}[/red]")
        raise typer.Exit(1)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if replayed != report.total_score:
        console.print(
            f"[red]Mismatch: report says {report.total_score}, breakdown gives {replayed}[/red]"
        )
        raise typer.Exit(1)
    console.print(f"[green]✓ Score verified: {replayed}[/green]")


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
) -> None:
    """
    Cortex Review - timed challenges and spaced review sessions

    \b
    Quick Start:
      cortex-review run items.json                 # 30s-per-question challenge
      cortex-review run items.json --mode untimed  # Review with difficulty ratings
      cortex-review schedule 8 10                  # Preview the next review
    """
    _configure_logging(get_settings(), verbose)


def run_cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run_cli()
