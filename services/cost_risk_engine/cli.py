"""Typer CLI: пакетный пересчёт модели риска для внешнего планировщика."""

from typing import Optional

import typer

from .database import init_db
from .schemas import ExtractionSummary, ScoringSummary, VolatilitySummary
from .sync import (
    run_all,
    run_observation_extraction,
    run_risk_scoring,
    run_volatility_estimation,
)
from .utils.logging import setup_logging

app = typer.Typer(help="Contract cost risk model sync.")

WorkersOption = typer.Option(None, "--workers", "-w", min=1, help="Worker pool size within a phase.")


def _echo_observations(summary: ExtractionSummary) -> None:
    typer.echo("Step 1: Extracting cost observations...")
    typer.echo(f"  Processed: {summary.processed} contracts")
    typer.echo(f"  Observations: {summary.total_observations}")
    typer.echo(f"  Errors: {summary.errors}")


def _echo_volatility(summary: VolatilitySummary) -> None:
    typer.echo("Step 2: Calculating volatility parameters...")
    typer.echo(f"  Parameters: {summary.parameters}")
    typer.echo(f"  Errors: {summary.errors}")


def _echo_scores(summary: ScoringSummary) -> None:
    typer.echo("Step 3: Calculating risk scores...")
    typer.echo(f"  Processed: {summary.processed} contracts")
    typer.echo(f"  Errors: {summary.errors}")


@app.callback()
def main() -> None:
    setup_logging()


@app.command("all")
def sync_all(workers: Optional[int] = WorkersOption) -> None:
    """Run the three phases in order."""
    report = run_all(max_workers=workers)
    _echo_observations(report.observations)
    _echo_volatility(report.volatility)
    _echo_scores(report.scores)
    typer.echo("Risk model sync complete!")
    typer.echo(f"  Total observations: {report.observations.total_observations}")
    typer.echo(f"  Volatility parameters: {report.volatility.parameters}")
    typer.echo(f"  Contracts scored: {report.scores.processed}")


@app.command("observations")
def sync_observations(workers: Optional[int] = WorkersOption) -> None:
    """Rebuild cost observations for every contract."""
    _echo_observations(run_observation_extraction(max_workers=workers))


@app.command("volatility")
def sync_volatility(workers: Optional[int] = WorkersOption) -> None:
    """Recompute category volatility parameters."""
    _echo_volatility(run_volatility_estimation(max_workers=workers))


@app.command("scores")
def sync_scores(workers: Optional[int] = WorkersOption) -> None:
    """Recompute contract risk scores."""
    _echo_scores(run_risk_scoring(max_workers=workers))


@app.command("init-db")
def init_database() -> None:
    """Create the risk schema and tables."""
    init_db()
    typer.echo("Schema ensured.")


if __name__ == "__main__":
    app()
