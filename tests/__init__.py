"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/conftest.py - Shared fixtures (fake page fetcher, in-memory sink, records)
- tests/test_*.py - One module per component

Async tests run with pytest-asyncio; no test touches the network.
"""
