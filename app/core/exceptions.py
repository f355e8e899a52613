"""Custom exception classes for the application."""
from typing import Any


class AppException(Exception):
    """Base exception for the application."""

    def __init__(self, message: str, detail: Any = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(AppException):
    """Resource not found."""
    pass


class InputError(AppException):
    """Subject property cannot be searched (missing location, price and area, ...)."""
    pass


class IdentityError(InputError):
    """No stable identity could be derived for a property."""
    pass


class CollaboratorUnavailableError(AppException):
    """Geocoder, relationship store or storage backend unreachable."""
    pass


class CrossTierRelationshipError(AppException):
    """Attempt to relate micro-locations of different tiers."""
    pass
