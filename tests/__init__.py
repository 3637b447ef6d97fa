"""
Robust Validation Test Suite

Usage:
    pytest tests/ -v
"""
