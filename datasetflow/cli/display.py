"""Rich display functions for the datasetflow CLI."""

import json
from typing import Any, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from datasetflow.connectors.base import ConnectorDescriptor
from datasetflow.exceptions import DatasetFlowError
from datasetflow.models import QueryResult

console = Console()

MAX_CELL_WIDTH = 40


def display_error(message: str) -> None:
    console.print(f"❌ [bold red]{message}[/bold red]")


def display_datasetflow_error(error: DatasetFlowError, context: str = "") -> None:
    """Display an engine error with its details and suggested actions.

    Args:
        error: Error raised by the engine
        context: Optional description of what was being done
    """
    context_text = f" during {context}" if context else ""
    display_error(f"{type(error).__name__}{context_text}: {error.message}")

    for detail in getattr(error, "errors", None) or []:
        console.print(f"   • {detail}")

    if error.suggested_actions:
        console.print("💡 [bold yellow]Suggestions:[/bold yellow]")
        for suggestion in error.suggested_actions:
            console.print(f"   • {suggestion}")


def display_success(message: str) -> None:
    console.print(f"✅ [bold green]{message}[/bold green]")


def display_warning(message: str) -> None:
    console.print(f"⚠️  [bold yellow]{message}[/bold yellow]")


def display_info_panel(title: str, content: str, style: str = "blue") -> None:
    """Display an information panel.

    Args:
        title: Panel title
        content: Panel content
        style: Rich style for the panel border
    """
    console.print(Panel(content, title=title, border_style=style))


def display_json_output(data: Any) -> None:
    """Print data as indented JSON.

    Values JSON cannot encode natively (dates, decimals) are rendered with str.
    """
    console.print_json(json.dumps(data, default=str, ensure_ascii=False))


def display_connectors_table(descriptors: List[ConnectorDescriptor]) -> None:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="white")
    table.add_column("Display name", style="white")
    table.add_column("Max connections", justify="right")
    table.add_column("Cancellation", style="green")

    for descriptor in descriptors:
        capabilities = descriptor.capabilities
        table.add_row(
            descriptor.name,
            descriptor.category,
            descriptor.display_name,
            str(capabilities.max_concurrent_connections),
            "yes" if capabilities.supports_cancellation else "no",
        )

    console.print(f"📡 [bold blue]Registered connectors ({len(descriptors)})[/bold blue]")
    console.print(table)


def descriptor_to_dict(descriptor: ConnectorDescriptor) -> dict:
    capabilities = descriptor.capabilities
    return {
        "name": descriptor.name,
        "category": descriptor.category,
        "display_name": descriptor.display_name,
        "description": descriptor.description,
        "config_fields": sorted(descriptor.config_schema.fields),
        "capabilities": {
            "supports_bulk_insert": capabilities.supports_bulk_insert,
            "supports_transactions": capabilities.supports_transactions,
            "max_concurrent_connections": capabilities.max_concurrent_connections,
            "supports_streaming": capabilities.supports_streaming,
            "supports_cancellation": capabilities.supports_cancellation,
        },
    }


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]null[/dim]"
    text = str(value)
    if len(text) > MAX_CELL_WIDTH:
        text = text[: MAX_CELL_WIDTH - 3] + "..."
    return text


def display_query_result(
    result: QueryResult, dataset_id: str, title: Optional[str] = None
) -> None:
    """Display query rows as a table followed by a one-line summary."""
    table = Table(show_header=True, header_style="bold blue", title=title)
    for column in result.columns:
        table.add_column(f"{column.name}\n[dim]{column.type}[/dim]")
    for row in result.rows:
        table.add_row(*(_cell(row.get(c.name)) for c in result.columns))

    console.print(table)
    source = "cache" if result.from_cache else "source"
    console.print(
        f"📊 [bold]{dataset_id}[/bold]: {len(result.rows)} of "
        f"{result.total_row_count} rows from {source} "
        f"in {result.execution_time:.3f}s [dim](query {result.query_hash})[/dim]"
    )
