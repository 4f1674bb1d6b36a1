"""Command line interface for datasetflow."""
