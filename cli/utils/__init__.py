"""CLI output and logging helpers."""
