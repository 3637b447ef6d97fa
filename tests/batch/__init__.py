"""Tests for batch config resolution and the batch runner."""
