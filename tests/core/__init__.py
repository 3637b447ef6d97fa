"""
Core Module Tests

Test suites for shared building blocks:
    - Statistics helpers
    - Dataset loading and candle trimming
    - Cost model
    - Artifact writers
"""
