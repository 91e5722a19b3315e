"""
Error hierarchy for the ingestion pipeline.

Components raise these at their own boundary; ``UploadWorkflow`` turns
them into the single operator-visible message.
"""

from __future__ import annotations

from typing import Optional, Sequence


class IngestError(Exception):
    """Base class for every failure the ingestion pipeline reports."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedFormatError(IngestError, ValueError):
    """File extension is not one of csv, xlsx, xls."""


class ParseError(IngestError):
    """File content cannot be decoded as its declared format."""


class ValidationError(IngestError):
    """A precondition for submission does not hold."""

    def __init__(self, message: str, missing_fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_fields = list(missing_fields)


class SubmissionError(IngestError):
    """The backend rejected the upload (anything other than a duplicate)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PollingFailure(IngestError):
    """A job status request failed; the job is reported as failed."""


class InvalidTransitionError(IngestError):
    """The tracker was asked for a transition its table does not allow."""


class TrackerBusyError(InvalidTransitionError):
    """A submission was requested while another one is in flight."""
