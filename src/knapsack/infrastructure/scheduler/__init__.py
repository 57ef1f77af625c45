"""Timer-driven scheduling."""
