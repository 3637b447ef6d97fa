"""
Exceptions raised by the robustness validation pipeline.

Every fatal condition carries a single-sentence message that is printed
verbatim by the CLI before it exits with a non-zero status.
"""


class RobustValidationError(Exception):
    """Base class for fatal pipeline errors."""


class DatasetError(RobustValidationError):
    """Dataset is unreadable, empty, or too short for the stress tests."""


class UnknownStrategyError(RobustValidationError):
    """One or more requested strategy keys are not registered."""

    def __init__(self, missing_keys):
        self.missing_keys = list(missing_keys)
        super().__init__(f"Unknown strategy key(s): {', '.join(self.missing_keys)}")


class PolicyError(RobustValidationError, ValueError):
    """Go/no-go or verdict policy values are inconsistent."""


class WalkForwardError(RobustValidationError, ValueError):
    """Walk-forward window sizing or parameter grid is unusable."""


class NoAuditRecordsError(RobustValidationError):
    """Audit inputs contained no recognizable records."""
