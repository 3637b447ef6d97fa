"""Tests for the robust_cli entry point."""
