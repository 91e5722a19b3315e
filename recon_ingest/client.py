"""
Processing backend client.

Thin ``requests`` wrapper over the two calls the ingestion core makes:

* ``POST /api/uploads``: multipart ``file`` + JSON ``columnMapping``;
  answers ``{"data": {"jobId": ...}}``. A 409 means the file was already
  processed and is reported as a duplicate success, with ``data.jobId``
  and ``message`` when the body carries them.
* ``GET /api/uploads/<jobId>/progress``: answers
  ``{"data": {"status", "progress", "errorMessage"}}``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import requests

from recon_ingest.config import ClientConfig
from recon_ingest.errors import PollingFailure, SubmissionError
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import JobStatus, JobStatusReport, RawFile, SubmissionResult

logger = get_logger("client")

GENERIC_UPLOAD_ERROR = "Upload failed"
PROGRESS_UNAVAILABLE = "Failed to get upload progress. Please check status manually."

_CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
}


def _json_body(response: requests.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class ReconciliationClient:
    """Talks to the reconciliation backend.

    Parameters
    ----------
    config:
        Base URL, endpoint paths, timeout and optional bearer token.
    session:
        Injected ``requests.Session``; one is created when omitted.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._session = session or requests.Session()
        if self._config.api_token:
            self._session.headers["Authorization"] = f"Bearer {self._config.api_token}"

    def _url(self, path: str) -> str:
        return self._config.base_url.rstrip("/") + path

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    def submit_upload(self, raw_file: RawFile, mapping: Mapping[str, str]) -> SubmissionResult:
        """Send the untouched file bytes and the mapping in one request.

        Raises
        ------
        SubmissionError
            On any outcome other than success or duplicate, with the server's
            message when it supplied one.
        """
        files = {
            "file": (
                raw_file.name,
                raw_file.data,
                _CONTENT_TYPES.get(raw_file.format.value, "application/octet-stream"),
            ),
        }
        data = {"columnMapping": json.dumps(dict(mapping))}

        logger.info("Submitting %r (%d bytes) with mapping %s", raw_file.name, raw_file.size, dict(mapping))
        try:
            response = self._session.post(
                self._url(self._config.upload_path),
                files=files,
                data=data,
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Upload request for %r failed: %s", raw_file.name, exc)
            raise SubmissionError(GENERIC_UPLOAD_ERROR) from exc

        body = _json_body(response)
        payload = body.get("data") or {}
        job_id = payload.get("jobId") if isinstance(payload, dict) else None

        if response.status_code == 409:
            notice = body.get("message") or "File has already been processed"
            logger.warning("Duplicate upload %r: %s (job %s)", raw_file.name, notice, job_id)
            # Already processed counts as success even without a job id
            return SubmissionResult(
                job_id=None if job_id is None else str(job_id), duplicate_notice=notice
            )

        if not response.ok:
            message = body.get("message") or GENERIC_UPLOAD_ERROR
            logger.error("Upload of %r rejected (%d): %s", raw_file.name, response.status_code, message)
            raise SubmissionError(message, status_code=response.status_code)

        if job_id is None:
            logger.error("Upload of %r accepted without a job id: %r", raw_file.name, body)
            raise SubmissionError(GENERIC_UPLOAD_ERROR, status_code=response.status_code)

        logger.info("Upload of %r accepted as job %s", raw_file.name, job_id)
        return SubmissionResult(job_id=str(job_id))

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def job_status(self, job_id: str) -> JobStatusReport:
        """Fetch one status report for *job_id*.

        Raises
        ------
        PollingFailure
            On transport errors, non-2xx answers or malformed payloads.
        """
        url = self._url(self._config.progress_path.format(job_id=job_id))
        try:
            response = self._session.get(url, timeout=self._config.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Progress request for job %s failed: %s", job_id, exc)
            raise PollingFailure(PROGRESS_UNAVAILABLE) from exc

        payload = _json_body(response).get("data")
        try:
            status = JobStatus(payload["status"])
            progress = int(payload.get("progress") or 0)
        except (AttributeError, TypeError, KeyError, ValueError) as exc:
            logger.error("Malformed progress payload for job %s: %r", job_id, payload)
            raise PollingFailure(PROGRESS_UNAVAILABLE) from exc

        error_message = payload.get("errorMessage") if status is JobStatus.FAILED else None
        logger.debug("Job %s: %s %d%%", job_id, status.value, progress)
        return JobStatusReport(status=status, progress=progress, error_message=error_message)

    def close(self) -> None:
        self._session.close()
