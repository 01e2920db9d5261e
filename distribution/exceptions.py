"""
Exceptions raised while loading distribution target configuration.
"""


class DistributionError(Exception):
    """Base exception for distribution configuration errors."""
    pass


class TargetsConfigError(DistributionError, ValueError):
    """Raised when a targets file is malformed or fails validation."""
    pass


class TargetsNotFoundError(DistributionError, FileNotFoundError):
    """Raised when a targets file does not exist."""
    pass
