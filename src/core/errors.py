"""
Exception hierarchy shared by the estimator, extractor and planner.
"""


class SLAMError(Exception):
    """Base class for all errors raised by this project."""


class StateConsistencyError(SLAMError):
    """State vector, covariance and hit counters disagree in size."""


class ConfigError(SLAMError):
    """Configuration file missing or malformed."""
