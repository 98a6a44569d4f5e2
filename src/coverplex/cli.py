# ================================================================================
# Command-line interface for coverage-driven primer set design
#
# Thin wrapper around the pipeline module.
# ================================================================================

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from coverplex.version import __version__

app = typer.Typer(
    name="coverplex",
    help="Design small primer sets that cover many templates in multiplex PCR.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold green]coverplex[/bold green] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """coverplex - Coverage-driven multiplex primer set design."""


def _load_settings(preset: str, config_file: Path | None):
    from coverplex.config import load_config

    try:
        return load_config(preset=preset, config_path=config_file)
    except FileNotFoundError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except ValidationError as e:
        console.print(f"[bold red]Invalid settings:[/bold red]\n{e}")
        raise typer.Exit(code=1) from e


def _print_issues(issues) -> None:
    if not issues:
        return
    console.print()
    console.print("[bold yellow]Input issues:[/bold yellow]")
    for issue in issues:
        console.print(f"  [yellow]• {issue}[/yellow]")


def _load_templates(templates_file: Path):
    from coverplex.tables import read_templates_csv

    try:
        return read_templates_csv(templates_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error reading templates: {e}[/bold red]")
        raise typer.Exit(code=1) from e


def _load_primers(primers_file: Path):
    from coverplex.tables import read_primers_csv

    try:
        return read_primers_csv(primers_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error reading primers: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@app.command()
def design(
    templates_file: Annotated[
        Path,
        typer.Option(
            "--templates",
            "-t",
            help="CSV with columns ID, Sequence and optionally Group, "
            "Allowed_Start_fw, Allowed_End_fw, Allowed_Start_rev, Allowed_End_rev.",
        ),
    ],
    output_dir: Annotated[
        Path,
        typer.Option("--output", "-o", help="Directory for output files."),
    ] = Path("./output"),
    direction: Annotated[
        str,
        typer.Option("--direction", "-d", help="Primer direction: fw, rev or both."),
    ] = "both",
    required_ratio: Annotated[
        float,
        typer.Option(
            "--ratio",
            "-r",
            min=0.0,
            max=1.0,
            help="Required template coverage ratio.",
        ),
    ] = 1.0,
    init_strategy: Annotated[
        str,
        typer.Option("--init", help="Candidate initialization: naive or tree."),
    ] = "naive",
    opti_strategy: Annotated[
        str,
        typer.Option("--optimizer", help="Set-cover strategy: greedy or ILP."),
    ] = "greedy",
    preset: Annotated[
        str,
        typer.Option("--preset", "-p", help="Settings preset (default or lenient)."),
    ] = "default",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a settings JSON file."),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Write a debug-level log file to the output directory."),
    ] = False,
) -> None:
    """
    Design a minimal primer set covering the templates.

    Example:
        coverplex design -t templates.csv -o results/ --optimizer ILP
    """
    from coverplex.logging import configure_file_logging
    from coverplex.pipeline import design_primers
    from coverplex.tables import write_frames, write_summary

    settings = _load_settings(preset, config_file)
    templates = _load_templates(templates_file)

    output_dir.mkdir(parents=True, exist_ok=True)
    configure_file_logging(output_dir, debug=debug)

    console.print("[bold green]coverplex[/bold green]")
    console.print(f"  Templates: {templates_file} ({len(templates)})")
    console.print(f"  Output:    {output_dir}")
    console.print()

    try:
        result = design_primers(
            templates,
            settings,
            direction=direction,
            required_ratio=required_ratio,
            init_strategy=init_strategy,
            opti_strategy=opti_strategy,
        )
    except ValueError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    write_frames(result.to_frames(), output_dir)
    write_summary(result.summary_dict(), output_dir)

    table = Table(title="Selected primer sets")
    table.add_column("Direction")
    table.add_column("Primers", justify="right")
    table.add_column("Coverage", justify="right")
    table.add_column("Target met")
    for d, r in result.directions.items():
        note = " (greedy fallback)" if r.fallback else ""
        table.add_row(
            d,
            str(len(r.selected)),
            f"{r.coverage_ratio:.3f}",
            ("yes" if r.target_met else "no") + note,
        )
    console.print(table)

    _print_issues(result.issues)

    if not result.target_met:
        console.print(
            f"[bold yellow]Required coverage {required_ratio} was not reached.[/bold yellow]"
        )


@app.command()
def check(
    primers_file: Annotated[
        Path,
        typer.Option("--primers", "-i", help="CSV with columns ID, Sequence, Direction."),
    ],
    templates_file: Annotated[
        Path,
        typer.Option("--templates", "-t", help="Templates CSV."),
    ],
    output_dir: Annotated[
        Path,
        typer.Option("--output", "-o", help="Directory for output files."),
    ] = Path("./output"),
    preset: Annotated[
        str,
        typer.Option("--preset", "-p", help="Settings preset (default or lenient)."),
    ] = "default",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a settings JSON file."),
    ] = None,
) -> None:
    """Evaluate existing primers against the constraints and templates."""
    import pandas as pd

    from coverplex.pipeline import check_constraints
    from coverplex.tables import write_frames

    settings = _load_settings(preset, config_file)
    templates = _load_templates(templates_file)
    primers = _load_primers(primers_file)

    checked, issues = check_constraints(primers, templates, settings)
    frames = {"checked_primers": pd.DataFrame([p.to_record() for p in checked])}
    if issues:
        frames["issues"] = pd.DataFrame([i.to_record() for i in issues])
    write_frames(frames, output_dir)

    n_pass = sum(1 for p in checked if p.passed)
    console.print(f"[bold green]{n_pass}/{len(checked)}[/bold green] primers pass all constraints.")
    _print_issues(issues)


@app.command()
def subset(
    primers_file: Annotated[
        Path,
        typer.Option("--primers", "-i", help="CSV with columns ID, Sequence, Direction."),
    ],
    templates_file: Annotated[
        Path,
        typer.Option("--templates", "-t", help="Templates CSV."),
    ],
    output_dir: Annotated[
        Path,
        typer.Option("--output", "-o", help="Directory for output files."),
    ] = Path("./output"),
    max_size: Annotated[
        int | None,
        typer.Option("--max-size", "-k", min=1, help="Largest subset size."),
    ] = None,
    preset: Annotated[
        str,
        typer.Option("--preset", "-p", help="Settings preset (default or lenient)."),
    ] = "default",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a settings JSON file."),
    ] = None,
) -> None:
    """Compute the best primer subset for every subset size."""
    import pandas as pd

    from coverplex.pipeline import check_constraints, subset_primer_set
    from coverplex.tables import write_frames

    settings = _load_settings(preset, config_file)
    templates = _load_templates(templates_file)
    primers = _load_primers(primers_file)

    checked, check_issues = check_constraints(primers, templates, settings)
    entries, subset_issues = subset_primer_set(checked, templates, settings, max_size=max_size)
    issues = list(dict.fromkeys(check_issues + subset_issues))
    frames = {"subsets": pd.DataFrame([e.to_record() for e in entries])}
    if issues:
        frames["issues"] = pd.DataFrame([i.to_record() for i in issues])
    write_frames(frames, output_dir)

    table = Table(title="Best subsets by size")
    table.add_column("Size", justify="right")
    table.add_column("Coverage", justify="right")
    table.add_column("Primers")
    for entry in entries:
        table.add_row(str(entry.size), f"{entry.ratio:.3f}", ", ".join(entry.primer_names))
    console.print(table)
    _print_issues(issues)


@app.command("init-config")
def init_config(
    output_file: Annotated[
        Path,
        typer.Option("--output", "-o", help="Where to write the settings JSON."),
    ] = Path("coverplex_settings.json"),
    preset: Annotated[
        str,
        typer.Option("--preset", "-p", help="Settings preset (default or lenient)."),
    ] = "default",
) -> None:
    """Write a settings preset to a JSON file for editing."""
    from coverplex.config import DesignSettings

    try:
        settings = DesignSettings.from_preset(preset)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    settings.to_json_file(output_file)
    console.print(f"[bold green]Done![/bold green] Settings written to {output_file}")


if __name__ == "__main__":
    app()
