"""
Integration tests for zapview.

These tests run the coordinator, caches and the real relay transport
together against an in-memory relay network. No network access needed.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
