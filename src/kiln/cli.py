"""CLI entrypoint.

Primary command:
- kiln compile BUILD_DIR CACHE_DIR [ENV_DIR]

Utilities:
- kiln doctor
- kiln status
- kiln cache list / kiln cache clear

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code 0 on success, 1 on provisioning failure, 2 on invalid input
  - Buildpack-style console output describing progress/results
- Invariants:
  - All commands validate their inputs (run_id, tool name) before execution
  - Provisioning is delegated to the orchestrator
- Failure:
  - Invalid arguments raise Typer BadParameter
  - KilnError is printed (already indented by the orchestrator) and exits 1
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .cache import ArchiveCache
from .config import CompileConfig
from .doctor import doctor_report
from .errors import KilnError
from .orchestrator import provision
from .runs.store import RunStore
from .util.ids import new_run_id, validate_name, validate_run_id

app = typer.Typer(add_completion=False, help="Build, cache and vendor native toolchains for a buildpack.")
cache_app = typer.Typer(add_completion=False, help="Inspect and clear the archive cache.")
app.add_typer(cache_app, name="cache")

console = Console()


def _version_callback(value: bool):
    if value:
        from . import __version__

        console.print(f"kiln version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    )
):
    pass


_CACHE_DIR_ARG = typer.Argument(..., help="Platform cache directory.")
_RECIPES_OPTION = typer.Option(
    None,
    "--recipes",
    help="Recipes YAML file (default: bundled recipes).",
)
_RUN_ID_OPTION = typer.Option(
    None,
    "--run-id",
    help="Run id (default: auto).",
)


@app.command()
def compile(
    build_dir: Path = typer.Argument(..., help="Application build directory."),
    cache_dir: Path = _CACHE_DIR_ARG,
    env_dir: Path | None = typer.Argument(None, help="Platform env directory."),
    recipes: Path | None = _RECIPES_OPTION,
    export_file: Path | None = typer.Option(
        None, "--export-file", help="Export manifest path (default: <buildpack>/export)."
    ),
    jobs: int | None = typer.Option(None, "--jobs", "-j", min=1, help="Parallel make jobs."),
    run_id: str | None = _RUN_ID_OPTION,
) -> None:
    """Provision git, unzip and ffmpeg into BUILD_DIR/vendor."""
    if not build_dir.is_dir():
        raise typer.BadParameter(f"Build dir not found: {build_dir}")
    if recipes is not None and not recipes.exists():
        raise typer.BadParameter(f"Recipes file not found: {recipes}")
    try:
        rid = validate_run_id(run_id or new_run_id())
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    cfg = CompileConfig(
        build_dir=build_dir.resolve(),
        cache_dir=cache_dir.resolve(),
        env_dir=env_dir.resolve() if env_dir else None,
        run_id=rid,
        recipes_file=recipes,
        export_file=export_file.resolve() if export_file else None,
        jobs=jobs,
        environ=dict(os.environ),
    )
    try:
        provision(cfg)
    except KilnError:
        raise typer.Exit(code=1)


@app.command()
def doctor(
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Cache dir to check."),
    recipes: Path | None = _RECIPES_OPTION,
) -> None:
    """Environment and preflight checks."""
    report = doctor_report(cache_dir=cache_dir, recipes_file=recipes)
    table = Table(title="kiln doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=2)


@app.command()
def status(
    cache_dir: Path = _CACHE_DIR_ARG,
    run_id: str = typer.Option(..., "--run", help="Run id."),
) -> None:
    """Show RUN_STATUS.json of a compile run."""
    try:
        validate_run_id(run_id)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    store = RunStore(cache_dir / ".kiln" / "runs" / run_id)
    status_path = store.path("RUN_STATUS.json")
    if not status_path.exists():
        raise typer.BadParameter(f"No status found: {status_path}")
    console.print_json(status_path.read_text(encoding="utf-8"))


@cache_app.command("list")
def cache_list(cache_dir: Path = _CACHE_DIR_ARG) -> None:
    """List cached tools."""
    entries = ArchiveCache(cache_dir).entries()
    if not entries:
        console.print("No cache entries found.")
        return
    table = Table(title="kiln cache")
    table.add_column("Tool")
    table.add_column("Version")
    table.add_column("Built")
    table.add_column("Path")
    for e in entries:
        version = e.record.version if e.record else "?"
        created = e.record.created_at if e.record else "?"
        table.add_row(e.name, version, created, str(e.path))
    console.print(table)


@cache_app.command("clear")
def cache_clear(
    cache_dir: Path = _CACHE_DIR_ARG,
    tool: str | None = typer.Option(None, "--tool", help="Only clear this tool."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove cache entries (all, or one tool)."""
    cache = ArchiveCache(cache_dir)
    if tool is not None:
        try:
            validate_name(tool)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e
        names = [tool]
    else:
        names = [e.name for e in cache.entries()]
    if not names:
        console.print("No cache entries found.")
        return
    if not yes and not typer.confirm(f"Remove cache entries for {', '.join(names)}?"):
        raise typer.Abort()
    removed = 0
    for name in names:
        with cache.lock(name):
            if cache.invalidate(name):
                removed += 1
    console.print(f"[green]Removed {removed} cache entr{'y' if removed == 1 else 'ies'}.[/green]")


if __name__ == "__main__":
    app()
