"""
Validation Tests

Test suites for the stress-test sections and the stress report.
"""
