"""Web layer for fedbroker."""
