"""Root of the exception hierarchy shared by every layer."""


class MandateTrackerError(Exception):
    """Base exception for all errors raised by this package."""
    pass
