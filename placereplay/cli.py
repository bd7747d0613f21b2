import logging
import time
from pathlib import Path
from typing import Optional

import typer

from .config import Settings, load_settings
from .decoder import Schema
from .errors import ConfigurationError, PlaceReplayError, UnknownUser
from .ingest import open_events
from .palette import colour_name
from .preprocessing import compact as compact_events
from .records import format_timestamp
from .search import CanvasHistory, candidates_frame

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Search and replay the r/place canvas history.")


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _print_time(t0: int) -> None:
    ms = (time.perf_counter_ns() - t0) / 1_000_000
    print(f"Execution Time (ms): {ms:.2f}")


def _replay(settings: Settings) -> CanvasHistory:
    if not settings.csv_location.exists():
        raise ConfigurationError(f"event log not found: {settings.csv_location}")
    end = settings.actual_end_time
    logger.info(
        "Final image cutoff %s, actual end cutoff %s",
        format_timestamp(settings.final_image_time),
        format_timestamp(end) if end is not None else "end of log",
    )
    history = CanvasHistory(settings.final_image_time, end)
    history.ingest(open_events(
        settings.csv_location,
        schema=settings.dataset,
        workers=settings.workers,
        chunk_size=settings.chunk_size,
    ))
    return history


def _print_report(history: CanvasHistory, user_id: str, show_tiles: bool) -> None:
    try:
        report = history.report(user_id)
    except UnknownUser as e:
        print(f"No data for user: {e.user_id}")
        return

    print(f"\nUser: {report.user_id}")
    print(f"Total placements: {report.total_placements}")
    if report.undo_count:
        print(f"Undo events: {report.undo_count}")
    print(f"Survived to final image: {report.survived_final_image}")
    print(f"Survived to actual end: {report.survived_actual_end}")

    if show_tiles:
        for (x, y), colour in report.surviving_cells:
            print(f"Remaining {colour_name(colour)} tile: {x},{y}")
        if not report.surviving_cells:
            print("No tiles remaining")


def _select_index(count: int) -> int:
    while True:
        index = typer.prompt("Select user by giving index", type=int)
        if 0 <= index < count:
            return index
        typer.echo("Index out of bounds", err=True)


@app.command()
def search(
    config: Optional[Path] = typer.Argument(None, help="TOML config file (default: ./config.toml if present)"),
    output_csv: Optional[Path] = typer.Option(None, "--output-csv", help="Also write the candidates to this CSV"),
    select: bool = typer.Option(True, "--select/--no-select", help="Ask which candidate to report on"),
    show_tiles: bool = typer.Option(False, "--show-tiles", help="List the tiles still standing at the end"),
) -> None:
    """Find users whose edits fit the configured search areas."""
    t0 = time.perf_counter_ns()
    try:
        settings = load_settings(config)
        _setup_logging(settings.log_level)
        # resolve before the long scan so bad bounds fail fast
        areas = settings.resolve_areas()
        if settings.user_id is None and not areas:
            raise ConfigurationError("no search_areas configured and no user_id given")

        history = _replay(settings)

        if settings.user_id is not None:
            _print_report(history, settings.user_id, show_tiles)
            _print_time(t0)
            return

        candidates = history.find_candidates(areas, settings.no_edits_outside)
        if not candidates:
            print("Did not find any users.")
            _print_time(t0)
            return

        print("Found users:")
        for i, c in enumerate(candidates):
            extra = f" (optional: {', '.join(c.optional_matches)})" if c.optional_matches else ""
            print(f"{i}: {c.user_id} [{c.placements} placements]{extra}")

        if output_csv is not None:
            candidates_frame(candidates, areas).write_csv(output_csv)
            print(f"Wrote CSV: {output_csv}")

        if len(candidates) == 1:
            _print_report(history, candidates[0].user_id, show_tiles)
        elif select:
            index = _select_index(len(candidates))
            _print_report(history, candidates[index].user_id, show_tiles)
    except PlaceReplayError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    _print_time(t0)


@app.command()
def report(
    config: Optional[Path] = typer.Argument(None, help="TOML config file (default: ./config.toml if present)"),
    user: str = typer.Option(..., "--user", help="User id to report on"),
    show_tiles: bool = typer.Option(False, "--show-tiles", help="List the tiles still standing at the end"),
) -> None:
    """Count one user's placements and how many survived to each cutoff."""
    t0 = time.perf_counter_ns()
    try:
        settings = load_settings(config, user_id=user)
        _setup_logging(settings.log_level)
        history = _replay(settings)
        _print_report(history, user, show_tiles)
    except PlaceReplayError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    _print_time(t0)


@app.command()
def compact(
    inp: Path = typer.Argument(..., help="Raw canvas history CSV"),
    out: Path = typer.Argument(..., help="Compact parquet file to write"),
    schema: Optional[str] = typer.Option(None, "--schema", help="Dataset variant, detected from the header if omitted"),
) -> None:
    """Sort a raw dump by time and write it as compact parquet."""
    t0 = time.perf_counter_ns()
    _setup_logging("INFO")
    if not inp.exists():
        raise typer.BadParameter(f"{inp} does not exist")
    try:
        variant = Schema(schema) if schema is not None else None
    except ValueError:
        choices = ", ".join(s.value for s in Schema)
        raise typer.BadParameter(f"unknown schema {schema!r}, expected one of: {choices}")

    try:
        rows = compact_events(inp, out, variant)
    except PlaceReplayError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    print(f"Wrote compact events: {out} (rows={rows})")
    _print_time(t0)


def main() -> None:
    app()
