"""
Audit Tests

Test suites for audit record parsing, matrix summaries, go/no-go policy
and report rendering.
"""
