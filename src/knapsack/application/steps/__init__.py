"""Automation step variants."""
