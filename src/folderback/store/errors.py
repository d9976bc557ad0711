"""Backend store errors."""


class StoreError(Exception):
    """Base exception for backend store operations."""


class ObjectNotFoundError(StoreError):
    """Raised when an object id does not exist in its container."""
