"""datasetflow CLI.

Typer application with Rich output. Commands build an engine from the
settings file given with ``--settings`` (plus ``DATASETFLOW_*`` environment
variables) and a YAML dataset catalog.
"""

from typing import Any, List, Optional

import typer
import yaml

from datasetflow.cli.commands.connectors import connectors_app
from datasetflow.cli.commands.datasets import datasets_app
from datasetflow.cli.display import (
    console,
    display_datasetflow_error,
    display_json_output,
    display_query_result,
)
from datasetflow.cli.factories import build_service, settings_from_context
from datasetflow.exceptions import DatasetFlowError, ValidationError
from datasetflow.logging import get_logger
from datasetflow.models import FilterCondition, QueryOptions
from datasetflow.query.filters import LIST_OPERATORS, NO_VALUE_OPERATORS

logger = get_logger(__name__)

app = typer.Typer(
    name="datasetflow",
    help="datasetflow CLI - query and transform datasets across data sources",
    add_completion=True,
)

app.add_typer(connectors_app, name="connectors")
app.add_typer(datasets_app, name="datasets")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings"),
    settings: Optional[str] = typer.Option(
        None, "--settings", help="YAML file with an 'engine' section"
    ),
) -> None:
    """datasetflow CLI - query and transform datasets across data sources.

    Examples:
        datasetflow connectors list --category relational
        datasetflow datasets validate catalog.yaml
        datasetflow query orders --catalog catalog.yaml --filter status:equals:paid
    """
    if version:
        from datasetflow import __version__

        console.print(f"datasetflow CLI v{__version__}")
        raise typer.Exit()

    ctx.obj = {"settings_path": settings, "verbose": verbose, "quiet": quiet}
    _setup_logging(verbose, quiet)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def parse_filter_option(raw: str) -> FilterCondition:
    """Parse ``column:operator[:value]``.

    Values are read as YAML scalars so numbers and booleans keep their type;
    ``in`` and ``not_in`` take a comma separated list.

    Raises:
        ValidationError: If the option is not in the expected form
    """
    parts = raw.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError(
            f"Filter '{raw}' must look like column:operator[:value]", field="filter"
        )
    column, operator = parts[0], parts[1]
    if len(parts) == 2:
        if operator not in NO_VALUE_OPERATORS:
            raise ValidationError(
                f"Filter '{raw}' needs a value for operator '{operator}'",
                field="filter",
            )
        return FilterCondition(column, operator)

    value: Any
    if operator in LIST_OPERATORS:
        value = [_scalar(item) for item in parts[2].split(",") if item != ""]
    else:
        value = _scalar(parts[2])
    return FilterCondition(column, operator, value)


def _scalar(text: str) -> Any:
    try:
        value = yaml.safe_load(text)
    except yaml.YAMLError:
        return text
    # keep structured YAML (lists, mappings) as the literal string
    return value if not isinstance(value, (list, dict)) else text


@app.command()
def query(
    ctx: typer.Context,
    dataset_id: str = typer.Argument(..., help="Dataset to query"),
    catalog: str = typer.Option(..., "--catalog", help="YAML dataset catalog"),
    caller: str = typer.Option("cli", "--caller", help="Caller id for permissions"),
    filters: Optional[List[str]] = typer.Option(
        None, "--filter", "-f", help="column:operator[:value], repeatable"
    ),
    columns: Optional[str] = typer.Option(
        None, "--columns", help="Comma separated columns to return"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=0),
    offset: Optional[int] = typer.Option(None, "--offset", min=0),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the result cache"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """Query a dataset from a catalog and print the rows."""
    try:
        options = QueryOptions(
            caller_id=caller,
            filters=[parse_filter_option(f) for f in filters or []],
            columns=[c.strip() for c in columns.split(",") if c.strip()]
            if columns
            else None,
            limit=limit,
            offset=offset,
            use_cache=not no_cache,
        )
        service = build_service(settings_from_context(ctx), catalog)
        result = service.execute_dataset_query(dataset_id, options)
    except DatasetFlowError as e:
        display_datasetflow_error(e, f"query of '{dataset_id}'")
        logger.debug(f"Query of '{dataset_id}' failed: {e}")
        raise typer.Exit(1)

    if format == "json":
        display_json_output(result.to_dict())
    else:
        display_query_result(result, dataset_id)


@app.command()
def version() -> None:
    """Show datasetflow version information."""
    from datasetflow import __version__

    console.print("📦 [bold blue]datasetflow Version Information[/bold blue]")
    console.print(f"Version: [cyan]{__version__}[/cyan]")
    console.print(f"Python: [cyan]{__import__('sys').version.split()[0]}[/cyan]")


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    from datasetflow.logging import configure_logging, suppress_third_party_loggers

    configure_logging(verbose=verbose, quiet=quiet)
    suppress_third_party_loggers()


if __name__ == "__main__":
    app()
