"""Robust validation command line interface."""
