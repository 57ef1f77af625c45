"""Notification bridges."""
