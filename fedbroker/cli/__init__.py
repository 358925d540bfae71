"""Command-line interface for fedbroker."""
