# src/s3ferry/exceptions.py
"""Custom exceptions for the s3ferry application."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from s3ferry.results import RunSummary


class S3FerryError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(S3FerryError):
    """Raised for configuration-related issues."""

    pass


class PathParseError(S3FerryError):
    """Raised when a path string is not of the form `s3://bucket[/prefix]`."""

    pass


class ListError(S3FerryError):
    """
    Raised when listing the source bucket fails.

    A listing failure is fatal to the run. When raised out of the scheduler,
    `summary` holds the outcomes of the transfers that were already in flight.
    """

    def __init__(self, message: str, page_number: Optional[int] = None) -> None:
        super().__init__(message)
        self.page_number: Optional[int] = page_number
        self.summary: Optional["RunSummary"] = None


class TransferError(S3FerryError):
    """Raised when a single object transfer fails."""

    pass


class GetError(TransferError):
    """Raised when reading an object from the source fails."""

    pass


class PutError(TransferError):
    """Raised when writing an object to the destination fails."""

    pass
