"""Connector commands: list registered connectors and test configurations."""

from typing import Optional

import typer

from datasetflow.cli.display import (
    console,
    descriptor_to_dict,
    display_connectors_table,
    display_datasetflow_error,
    display_error,
    display_json_output,
    display_success,
)
from datasetflow.cli.factories import (
    build_registry,
    read_yaml_mapping,
    settings_from_context,
)
from datasetflow.exceptions import DatasetFlowError
from datasetflow.logging import get_logger

connectors_app = typer.Typer(
    name="connectors",
    help="List and test data source connectors",
    rich_markup_mode="rich",
)

logger = get_logger(__name__)


@connectors_app.command("list")
def list_connectors(
    ctx: typer.Context,
    category: Optional[str] = typer.Option(
        None, "--category", "-c", help="Only show connectors of this category"
    ),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """List the registered connectors."""
    try:
        registry = build_registry(settings_from_context(ctx))
        if category:
            descriptors = registry.by_category(category)
        else:
            descriptors = [registry.describe(name) for name in registry.names()]

        if format == "json":
            display_json_output([descriptor_to_dict(d) for d in descriptors])
        else:
            display_connectors_table(descriptors)
        logger.info(f"Listed {len(descriptors)} connectors")
    except DatasetFlowError as e:
        display_datasetflow_error(e, "connector listing")
        raise typer.Exit(1)


@connectors_app.command("test")
def test_connector(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Registered connector name"),
    config: str = typer.Option(
        ..., "--config", help="YAML file with the connector configuration"
    ),
) -> None:
    """Validate a configuration and test a connection with it."""
    try:
        registry = build_registry(settings_from_context(ctx))
        connector_config = read_yaml_mapping(config)

        validation = registry.validate_config(name, connector_config)
        if not validation:
            display_error(f"Invalid configuration for connector '{name}'")
            for problem in validation.errors:
                console.print(f"   • {problem}")
            raise typer.Exit(1)

        result = registry.get(name).test_connection(connector_config)
        if not result:
            display_error(result.message or f"Connection test failed for '{name}'")
            raise typer.Exit(1)

        timing = f" ({result.response_time:.3f}s)" if result.response_time else ""
        display_success(f"{result.message}{timing}")
    except DatasetFlowError as e:
        display_datasetflow_error(e, "connection test")
        raise typer.Exit(1)
