"""Web search adapter."""
