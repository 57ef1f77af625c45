"""Application layer: ports, steps and services."""
