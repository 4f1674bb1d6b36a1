"""Typer sub-applications for the datasetflow CLI."""
