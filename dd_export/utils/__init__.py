"""Shared building blocks: settings, schemas, mapping engine, fetcher, sink."""
