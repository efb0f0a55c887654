"""Command-line applications of the exporter."""
