"""
Canonical transaction schema and data models.

Defines the canonical fields an uploaded file is mapped onto and the typed
structures carried between parser, submitter and tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional

from recon_ingest.errors import UnsupportedFormatError


# ---------------------------------------------------------------------------
# Canonical Schema
# ---------------------------------------------------------------------------

class CanonicalField(str, Enum):
    """
    Every logical column the backend expects.

    The ``.value`` is the wire name sent in the ``columnMapping`` payload.
    """

    TRANSACTION_ID = "transactionId"
    AMOUNT = "amount"
    REFERENCE_NUMBER = "referenceNumber"
    DATE = "date"

    @property
    def label(self) -> str:
        return _FIELD_LABELS[self]

    @property
    def required(self) -> bool:
        return self in REQUIRED_FIELDS


_FIELD_LABELS = {
    CanonicalField.TRANSACTION_ID: "Transaction ID",
    CanonicalField.AMOUNT: "Amount",
    CanonicalField.REFERENCE_NUMBER: "Reference Number",
    CanonicalField.DATE: "Date",
}

# Declaration order is the order missing fields are reported in
REQUIRED_FIELDS: tuple[CanonicalField, ...] = (
    CanonicalField.TRANSACTION_ID,
    CanonicalField.AMOUNT,
)

CANONICAL_NAMES: tuple[str, ...] = tuple(f.value for f in CanonicalField)


def canonical_lookup(name: str) -> Optional[CanonicalField]:
    """Look a field up by wire name or display label, case-insensitively."""
    _lower = name.strip().lower()
    for f in CanonicalField:
        if f.value.lower() == _lower or f.label.lower() == _lower:
            return f
    return None


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class FileFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
    XLS = "xls"

    @property
    def is_spreadsheet(self) -> bool:
        return self is not FileFormat.CSV

    @classmethod
    def from_filename(cls, name: str) -> "FileFormat":
        """Derive the format tag from the extension.

        Raises
        ------
        UnsupportedFormatError
            For any extension other than csv, xlsx or xls.
        """
        suffix = PurePath(name).suffix.lower().lstrip(".")
        try:
            return cls(suffix)
        except ValueError:
            raise UnsupportedFormatError(
                f"Unsupported file type '{name}'. Supported formats: CSV, XLS, XLSX"
            ) from None


@dataclass(frozen=True)
class RawFile:
    """An operator-selected file, held entirely in memory."""

    name: str
    data: bytes = field(repr=False)
    format: FileFormat

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> "RawFile":
        return cls(name=name, data=bytes(data), format=FileFormat.from_filename(name))

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def size_mb(self) -> float:
        return round(self.size / 1024 / 1024, 2)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size, "format": self.format.value}


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(frozen=True)
class JobStatusReport:
    """One answer from the job status endpoint."""

    status: JobStatus
    progress: int
    error_message: Optional[str] = None


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a successful or duplicate upload."""

    # None only for a duplicate answered without a job id
    job_id: Optional[str]
    # Server explanation when the file was already processed under this job
    duplicate_notice: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_notice is not None
