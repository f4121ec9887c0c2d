"""
fluency-sim: developer tooling for the practice core.

Commands:
- fluency-sim simulate   - Run synthetic learner personas through a session
- fluency-sim config     - Show the resolved configuration
"""
from __future__ import annotations

from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from config import get_settings
from fluency.core.config_resolver import PLAYBACK_PRESETS, ConfigResolver
from fluency.core.errors import ConfigError
from fluency.core.log_config import configure_logging
from fluency.simulation import PERSONAS, SimulationReport, run_simulation

app = typer.Typer(
    name="fluency-sim",
    help="Developer tooling for fluency-core",
    no_args_is_help=True,
)
console = Console()


def _report_table(reports: list[SimulationReport]) -> Table:
    table = Table(title="Persona Simulation")
    table.add_column("Persona", style="bold cyan")
    table.add_column("Rounds", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Spikes (m/M/S)", justify="right")
    table.add_column("Repeat", justify="right")
    table.add_column("Break", justify="right")
    table.add_column("Mastery (A/Co/Cf/M)", justify="right")
    table.add_column("Retired", justify="right")
    table.add_column("Pace", justify="right")
    table.add_column("Tempo", style="dim")

    for r in reports:
        spikes = "/".join(str(r.spikes.get(k, 0)) for k in ("mild", "moderate", "severe"))
        mastery = "/".join(
            str(r.mastery.get(k, 0)) for k in ("acquisition", "consolidating", "confident", "mastered")
        )
        tempo = f"{r.tempo}/{r.consistency}" if r.tempo else "uncalibrated"
        table.add_row(
            r.persona,
            str(r.rounds),
            str(r.items),
            spikes,
            str(r.repeats),
            str(r.breakdowns),
            mastery,
            str(r.retired),
            f"{r.pause_multiplier:.2f}x",
            tempo,
        )
    return table


@app.command()
def simulate(
    persona: Optional[list[str]] = typer.Option(
        None, "--persona", "-p", help=f"Persona(s) to run: {', '.join(PERSONAS)}"
    ),
    rounds: int = typer.Option(20, "--rounds", "-r", help="Rounds per persona"),
    units: int = typer.Option(30, "--units", "-u", help="Units in the synthetic course"),
    seed: int = typer.Option(7, "--seed", help="Random seed"),
    preset: str = typer.Option("default", "--preset", help=f"Playback preset: {', '.join(PLAYBACK_PRESETS)}"),
) -> None:
    """Run synthetic learners through the real session loop."""
    unknown = [p for p in (persona or []) if p not in PERSONAS]
    if unknown:
        console.print(f"[bold red]Unknown persona(s):[/bold red] {', '.join(unknown)}")
        raise typer.Exit(code=1)

    try:
        settings = ConfigResolver().apply_preset(preset)
    except ConfigError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(code=1)

    reports = run_simulation(persona or None, rounds=rounds, unit_count=units, seed=seed, settings=settings)
    console.print(_report_table(reports))


@app.command("config")
def show_config(
    section: Optional[str] = typer.Argument(None, help="Only show this section"),
) -> None:
    """Show the resolved configuration."""
    data = get_settings().model_dump()
    if section:
        if section not in data:
            console.print(f"[bold red]Unknown section:[/bold red] {section}")
            raise typer.Exit(code=1)
        data = {section: data[section]}

    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for name, value in data.items():
        if isinstance(value, dict):
            for key, inner in value.items():
                table.add_row(f"{name}.{key}", repr(inner))
        else:
            table.add_row(name, repr(value))
    console.print(table)


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)
    logger.debug("fluency-sim starting")
    app()


if __name__ == "__main__":
    main()
