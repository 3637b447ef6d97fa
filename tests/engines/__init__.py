"""
Engine Tests

Test suites for the reference collaborators:
    - Strategy registry and signals
    - Backtest engine fills and equity
    - Seeded random-search finder
"""
