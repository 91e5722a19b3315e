"""
Ingestion Submitter.

Gates the single upload call on a complete column mapping. A failed gate
never reaches the network.
"""

from __future__ import annotations

from typing import Optional, Protocol

from recon_ingest.column_mapping import ColumnMappingValidator
from recon_ingest.errors import ValidationError
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import JobStatusReport, RawFile, SubmissionResult

logger = get_logger("submitter")

NO_FILE_MESSAGE = "Please select a file first"


class BackendClient(Protocol):
    """What the core needs from the processing backend."""

    def submit_upload(self, raw_file: RawFile, mapping: dict) -> SubmissionResult: ...

    def job_status(self, job_id: str) -> JobStatusReport: ...


class IngestionSubmitter:
    def __init__(self, client: BackendClient, validator: ColumnMappingValidator) -> None:
        self._client = client
        self._validator = validator

    def submit(self, raw_file: Optional[RawFile]) -> SubmissionResult:
        """Upload *raw_file* with the current mapping.

        Raises
        ------
        ValidationError
            No file, or a required field unmapped. Nothing is sent.
        SubmissionError
            The backend refused the upload.
        """
        if raw_file is None:
            raise ValidationError(NO_FILE_MESSAGE)
        self._validator.require_valid()

        result = self._client.submit_upload(raw_file, self._validator.as_payload())
        if result.is_duplicate:
            logger.info("%r was already processed as job %s", raw_file.name, result.job_id)
        return result
