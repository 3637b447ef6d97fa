"""
Optimization Tests

Test suites for walk-forward optimization and its verdict layer.
"""
