"""LLM completion adapter."""
