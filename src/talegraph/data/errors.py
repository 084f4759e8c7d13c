"""Custom exceptions for story storage."""


class DataError(Exception):
    """Base exception for the data layer."""


class DataLoadError(DataError):
    """Raised when a stored JSON document is missing or invalid."""


class DataValidationError(DataError):
    """Raised when stored content fails structural validation."""


class StorageError(DataError):
    """Raised when a backend cannot read or write its storage."""
