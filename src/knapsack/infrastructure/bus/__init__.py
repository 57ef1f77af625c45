"""In-memory message bus."""
