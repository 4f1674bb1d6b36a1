"""Dataset commands: catalog validation, connection tests and column listing."""

import typer
from rich.table import Table

from datasetflow.cli.display import (
    console,
    display_datasetflow_error,
    display_error,
    display_json_output,
    display_success,
)
from datasetflow.cli.factories import build_service, settings_from_context
from datasetflow.exceptions import DatasetFlowError
from datasetflow.logging import get_logger
from datasetflow.metadata import load_catalog, validate_catalog

datasets_app = typer.Typer(
    name="datasets",
    help="Validate and inspect dataset catalogs",
    rich_markup_mode="rich",
)

logger = get_logger(__name__)


@datasets_app.command("validate")
def validate(
    ctx: typer.Context,
    catalog: str = typer.Argument(..., help="YAML catalog with a 'datasets' list"),
) -> None:
    """Check a catalog for broken, cyclic or too deep transformation chains."""
    try:
        settings = settings_from_context(ctx)
        datasets = load_catalog(catalog)
        problems = validate_catalog(datasets, settings.max_transformation_depth)
    except DatasetFlowError as e:
        display_datasetflow_error(e, "catalog validation")
        raise typer.Exit(1)

    if problems:
        display_error(f"Catalog {catalog} has {len(problems)} problem(s)")
        for problem in problems:
            console.print(f"   • {problem}")
        raise typer.Exit(1)

    sources = sum(1 for d in datasets if d.is_source)
    display_success(
        f"Catalog is valid: {len(datasets)} datasets "
        f"({sources} source, {len(datasets) - sources} transformation)"
    )


@datasets_app.command("test")
def test(
    ctx: typer.Context,
    dataset_id: str = typer.Argument(..., help="Dataset to test"),
    catalog: str = typer.Option(..., "--catalog", help="YAML dataset catalog"),
) -> None:
    """Test the connection behind a dataset's source."""
    try:
        service = build_service(settings_from_context(ctx), catalog)
        result = service.test_dataset(dataset_id)
    except DatasetFlowError as e:
        display_datasetflow_error(e, "dataset test")
        raise typer.Exit(1)

    if not result:
        display_error(result.message or f"Connection test failed for '{dataset_id}'")
        raise typer.Exit(1)
    display_success(result.message or f"Dataset '{dataset_id}' is reachable")


@datasets_app.command("columns")
def columns(
    ctx: typer.Context,
    dataset_id: str = typer.Argument(..., help="Dataset to describe"),
    catalog: str = typer.Option(..., "--catalog", help="YAML dataset catalog"),
    caller: str = typer.Option("cli", "--caller", help="Caller id for permissions"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """Show the columns a dataset query returns."""
    try:
        service = build_service(settings_from_context(ctx), catalog)
        dataset_columns = service.get_dataset_columns(dataset_id, caller)
    except DatasetFlowError as e:
        display_datasetflow_error(e, "column listing")
        raise typer.Exit(1)

    if format == "json":
        display_json_output([c.to_dict() for c in dataset_columns])
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Column", style="cyan")
    table.add_column("Type", style="white")
    for column in dataset_columns:
        table.add_row(column.name, column.type)
    console.print(table)
    logger.debug(f"Listed {len(dataset_columns)} columns of '{dataset_id}'")
