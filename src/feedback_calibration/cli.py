"""Command-line interface for the feedback calibration engine."""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .engine import CalibrationEngine
from .exceptions import CalibrationEngineError

app = typer.Typer(
    name="feedback-calibration",
    help="Feedback Calibration - align AI evaluation scores with evaluator corrections",
    add_completion=False,
)

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _open_engine(db_path: Optional[str]) -> CalibrationEngine:
    settings = Settings.load()
    if db_path:
        settings.store.db_path = db_path
    configure_logging(settings.app.log_level)
    return CalibrationEngine.from_settings(settings)


@app.command()
def version():
    """Show version information."""
    from feedback_calibration import __version__

    console.print(Panel.fit(
        f"[bold blue]Feedback Calibration[/bold blue]\n"
        f"Version: [green]{__version__}[/green]",
        title="Version Info"
    ))


@app.command()
def analyze(
    period_days: Optional[int] = typer.Option(
        None, "--period-days", "-p", min=1, help="Trailing window in days (defaults to configuration)"
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db", help="SQLite database path (defaults to CALIBRATION_DB_PATH)"
    ),
):
    """Run a calibration analysis batch and show per-parameter results."""
    try:
        engine = _open_engine(db_path)
        try:
            run = engine.run_calibration_analysis(period_days)
        finally:
            engine.close()
    except CalibrationEngineError as e:
        console.print(f"[red]❌ Calibration analysis failed: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Calibration {run.period_start:%Y-%m-%d} → {run.period_end:%Y-%m-%d}")
    table.add_column("Parameter", style="cyan")
    table.add_column("Feedbacks", justify="right")
    table.add_column("Avg adj.", justify="right")
    table.add_column("New adj.", justify="right")
    table.add_column("Evaluators")
    table.add_column("Status")

    for parameter_id, result in run.results.items():
        status = f"[red]{result.error}[/red]" if result.error else (
            "[green]history written[/green]" if result.history_written else ""
        )
        table.add_row(
            parameter_id,
            str(result.feedback_count),
            f"{result.avg_adjustment:+.2f}",
            f"{result.new_adjustment:+.2f}" if result.new_adjustment is not None else "-",
            ", ".join(result.evaluators),
            status,
        )

    console.print(table)
    console.print(f"Total feedbacks analyzed: [bold]{run.total_feedbacks_analyzed}[/bold]")

    if run.failed_parameters:
        raise typer.Exit(code=1)


@app.command()
def state(
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Show the current calibration state for every parameter."""
    try:
        engine = _open_engine(db_path)
        try:
            states = engine.get_calibration_state()
        finally:
            engine.close()
    except CalibrationEngineError as e:
        console.print(f"[red]❌ Failed to read calibration state: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Calibration State")
    table.add_column("Parameter", style="cyan")
    table.add_column("Adjustment", justify="right")
    table.add_column("Feedbacks", justify="right")
    table.add_column("Last analyzed")
    table.add_column("Guidance", overflow="fold")

    for parameter_id, calibration in states.items():
        table.add_row(
            parameter_id,
            f"{calibration.adjustment:+.2f}",
            str(calibration.total_feedback_count),
            calibration.last_analyzed_at.strftime("%Y-%m-%d %H:%M") if calibration.last_analyzed_at else "never",
            calibration.guidance,
        )

    console.print(table)


@app.command()
def history(
    parameter: Optional[str] = typer.Option(None, "--parameter", help="Only show this parameter"),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum entries"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Show calibration history, newest first."""
    try:
        engine = _open_engine(db_path)
        try:
            entries = engine.get_calibration_history(parameter_id=parameter, limit=limit)
        finally:
            engine.close()
    except CalibrationEngineError as e:
        console.print(f"[red]❌ Failed to read calibration history: {e}[/red]")
        raise typer.Exit(code=1)

    if not entries:
        console.print("[yellow]No calibration history yet[/yellow]")
        return

    table = Table(title="Calibration History")
    table.add_column("When")
    table.add_column("Parameter", style="cyan")
    table.add_column("Adjustment", justify="right")
    table.add_column("Feedbacks", justify="right")
    table.add_column("Summary", overflow="fold")

    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.parameter_id,
            f"{entry.previous_adjustment:+.2f} → {entry.new_adjustment:+.2f}",
            str(entry.feedback_count),
            entry.summary,
        )

    console.print(table)


@app.command()
def feedback(
    evaluation: str = typer.Option(..., "--evaluation", "-e", help="Evaluation id"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """List feedback recorded for an evaluation."""
    try:
        engine = _open_engine(db_path)
        try:
            records = engine.list_feedback(evaluation)
        finally:
            engine.close()
    except CalibrationEngineError as e:
        console.print(f"[red]❌ Failed to list feedback: {e}[/red]")
        raise typer.Exit(code=1)

    if not records:
        console.print(f"[yellow]No feedback for evaluation {evaluation}[/yellow]")
        return

    table = Table(title=f"Feedback for {evaluation}")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("Original → Adjusted")
    table.add_column("Evaluator")
    table.add_column("Comment", overflow="fold")

    for record in records:
        target = record.score_ref if record.score_ref else record.voice_metric.value
        table.add_row(
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.feedback_type.value,
            target,
            f"{record.original_score} → {record.adjusted_score}",
            record.evaluator_id,
            record.comment,
        )

    console.print(table)


@app.command()
def stats(
    period_days: Optional[int] = typer.Option(None, "--period-days", "-p", min=1, help="Trailing window in days"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Show how far evaluators move AI scores, per parameter."""
    try:
        engine = _open_engine(db_path)
        try:
            statistics = engine.get_feedback_statistics(period_days)
        finally:
            engine.close()
    except CalibrationEngineError as e:
        console.print(f"[red]❌ Failed to compute statistics: {e}[/red]")
        raise typer.Exit(code=1)

    if not statistics:
        console.print("[yellow]No score corrections in this window[/yellow]")
        return

    table = Table(title="Correction Statistics")
    table.add_column("Parameter", style="cyan")
    table.add_column("n", justify="right")
    table.add_column("AI mean", justify="right")
    table.add_column("Evaluator mean", justify="right")
    table.add_column("Mean Δ", justify="right")
    table.add_column("|Δ|", justify="right")
    table.add_column("↑ / ↓", justify="right")
    table.add_column("Bias")

    for parameter_id, s in statistics.items():
        table.add_row(
            parameter_id,
            str(s.n_samples),
            f"{s.mean_original:.2f}",
            f"{s.mean_adjusted:.2f}",
            f"{s.mean_delta:+.2f}",
            f"{s.mean_absolute_delta:.2f}",
            f"{s.upward_share:.0%} / {s.downward_share:.0%}",
            "[red]yes[/red]" if s.systematic_bias_detected else "no",
        )

    console.print(table)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
