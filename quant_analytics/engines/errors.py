"""
Error taxonomy shared by the analytics engines.

Indicator and statistics functions validate their inputs up front and raise
one of these instead of returning partial or NaN-laden results.
"""

from typing import Optional


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================


class AnalyticsError(Exception):
    """Base exception for all analytics errors."""


class InsufficientData(AnalyticsError):
    """Raised when a series is shorter than the minimum window."""

    def __init__(self, indicator: str, required: int, available: int):
        self.indicator = indicator
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data for {indicator}: need {required}, got {available}"
        )


class InvalidInput(AnalyticsError):
    """Raised for non-finite numeric fields or invalid parameters."""

    def __init__(self, message: str, field_name: Optional[str] = None, index: Optional[int] = None):
        self.field_name = field_name
        self.index = index
        super().__init__(message)


class InvalidConfig(AnalyticsError):
    """Raised when a binning or engine configuration value is invalid."""

    def __init__(self, name: str, value: object, reason: str = "must be a positive finite number"):
        self.name = name
        self.value = value
        super().__init__(f"{name} {reason}, got {value!r}")


class UnknownRequestType(AnalyticsError):
    """Raised at the compute worker boundary for unrecognised request types."""

    def __init__(self, request_type: object):
        self.request_type = request_type
        super().__init__(f"Unknown message type: {request_type}")
