"""
Exporter Module Entry Point

Allows execution via: python -m dd_export.apps.exporter

Delegates to the runner for both commands (validate and export).
"""

from dd_export.apps.exporter.runner import run

if __name__ == "__main__":
    run()
