from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from .env import get_env
from .fitting.config import (
    FitConfig,
    config_as_dict,
    get_config,
    load_config_from_file,
    print_config,
)
from .fitting.features import validate_pose_for_bike_fit
from .models import FitAnalysisError
from .services import (
    analyze_request,
    analyze_request_file,
    load_request,
    render_report_text,
    reports_to_dataframe,
)

app = typer.Typer(help="Two-position bike-fit analysis from pose landmarks.")

_state: dict[str, Optional[FitConfig]] = {"config": None}


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _active_config() -> FitConfig:
    return _state["config"] or get_config()


def _configure_logging() -> None:
    level_name = (get_env("LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.callback()
def root(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="TOML or JSON threshold file (overrides BIKEFIT_CONFIG).",
    ),
) -> None:
    _configure_logging()
    _state["config"] = None
    if config_path is None:
        return
    try:
        _state["config"] = load_config_from_file(config_path)
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        _fail(f"Could not load config: {exc}", code=2)


@app.command("analyze")
def analyze(
    request_path: Path = typer.Argument(..., help="JSON request with 'photos', 'angles' or 'landmarks'."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Also write the JSON report here."),
) -> None:
    """Analyse one fit request and print the report."""
    if not request_path.exists():
        _fail(f"Request file not found: {request_path}")
    try:
        report = analyze_request(load_request(request_path), _active_config())
    except FitAnalysisError as exc:
        _fail(f"Analysis failed: {exc}")
        return

    payload = report.to_dict()
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    if as_json:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        typer.echo(render_report_text(report))
    if output is not None:
        typer.echo(f"Report written to {output}")


@app.command("check")
def check(
    landmarks_path: Path = typer.Argument(..., help="JSON file holding a landmark array (or {'landmarks': [...]})."),
) -> None:
    """Check whether a landmark set is usable for a side-on fit."""
    if not landmarks_path.exists():
        _fail(f"Landmarks file not found: {landmarks_path}")
    try:
        raw = load_request(landmarks_path)
    except FitAnalysisError as exc:
        _fail(str(exc))
        return
    landmarks = raw.get("landmarks") if isinstance(raw, dict) else raw
    result = validate_pose_for_bike_fit(landmarks, _active_config())
    if result.is_valid:
        typer.secho("Pose is suitable for bike-fit analysis.", fg=typer.colors.GREEN)
        return
    for issue in result.issues:
        typer.echo(f"- {issue}")
    raise typer.Exit(code=1)


@app.command("batch")
def batch(
    directory: Path = typer.Argument(..., help="Directory of *.json fit requests."),
    to: Path = typer.Option(Path("bikefit_results.csv"), "--to", help="CSV destination."),
    pattern: str = typer.Option("*.json", "--pattern", help="Glob for request files."),
) -> None:
    """Analyse every request in a directory and tabulate the results."""
    if not directory.is_dir():
        _fail(f"Not a directory: {directory}")
    files = sorted(directory.glob(pattern))
    if not files:
        typer.echo(f"No request files matching {pattern} in {directory}.")
        raise typer.Exit(code=0)

    cfg = _active_config()
    rows = []
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        transient=True,
    ) as progress:
        task = progress.add_task("Analysing", total=len(files))
        for path in files:
            rows.append(analyze_request_file(path, cfg))
            progress.advance(task)

    df = reports_to_dataframe(rows, cfg)
    to.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(to, index=False)
    failed = int((df["status"] == "error").sum())
    typer.echo(f"Analysed {len(df)} requests ({failed} failed). Results written to {to}")


@app.command("config")
def config_show(
    as_json: bool = typer.Option(False, "--json", help="Print the effective configuration as JSON."),
) -> None:
    """Show the effective thresholds and constants."""
    cfg = _active_config()
    if as_json:
        typer.echo(json.dumps(config_as_dict(cfg), indent=2))
        return
    print_config(cfg)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
