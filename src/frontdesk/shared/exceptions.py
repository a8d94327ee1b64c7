"""
Domain exceptions mapped to HTTP responses by the application factory.
"""


class FrontdeskError(Exception):
    """Base class for domain errors."""


class NotFoundError(FrontdeskError):
    """Raised when a requested entity does not exist."""


class ValidationError(FrontdeskError):
    """Raised when input is well-formed but violates a business rule."""


class ConflictError(FrontdeskError):
    """Raised when the requested transition conflicts with current state."""
