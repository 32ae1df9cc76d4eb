"""Main CLI application for bdmm."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

app = typer.Typer(
    name="bdmm",
    help="Multi-type birth-death-migration likelihoods for type-annotated trees",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


@app.command()
def loglik(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Type-annotated tree file (extended Newick with [&type=...])",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    params: Path = typer.Option(
        ...,
        "--params", "-p",
        help="Parameter file (JSON)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    scaled: Optional[bool] = typer.Option(
        None,
        "--scaled/--no-scaled",
        help="Use scaled numbers for densities (default: from parameter file)",
    ),
    condition_on_survival: Optional[bool] = typer.Option(
        None,
        "--condition-on-survival/--no-condition-on-survival",
        help="Condition on survival of the horizon lineage (default: from parameter file)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging, including why an evaluation was rejected",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Compute the log-likelihood of a type-annotated tree.

    Example:
        bdmm loglik -t colored.nwk -p params.json
        bdmm loglik -t colored.nwk -p params.json --scaled --format json
    """
    from .commands.loglik import run_loglik

    run_loglik(
        tree=tree,
        params=params,
        scaled=scaled,
        condition_on_survival=condition_on_survival,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command()
def check(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Type-annotated tree file (extended Newick with [&type=...])",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    params: Optional[Path] = typer.Option(
        None,
        "--params", "-p",
        help="Parameter file (JSON); enables origin-branch and sampling checks",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
):
    """
    Validate the type history of a tree.

    Example:
        bdmm check -t colored.nwk
        bdmm check -t colored.nwk -p params.json
    """
    from .commands.check import run_check

    run_check(tree=tree, params=params)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
