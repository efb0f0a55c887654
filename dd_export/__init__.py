"""dd-export - Export Datadog logs to CSV with a declarative field mapping."""

__version__ = "0.1.0"
