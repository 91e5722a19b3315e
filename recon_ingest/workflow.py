"""
Upload Workflow Orchestrator.

The single operator-facing flow::

    select file → headers → (preview) → mapping → submit → track → reset

``UploadWorkflow`` owns the selected file, its header set, the preview rows,
the column mapping and the tracker. Every failure ends up in one
operator-visible message; component errors never escape the public
methods except for programming errors such as an unknown canonical field.

Usage
-----
>>> wf = UploadWorkflow(client=ReconciliationClient())
>>> wf.select_file("data.csv", payload)
>>> wf.set_mapping("transactionId", "TxnID")
>>> wf.set_mapping("amount", "Amt")
>>> wf.submit().tracker.state
<TrackerState.POLLING: 'polling'>
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Mapping, Optional

from recon_ingest.client import GENERIC_UPLOAD_ERROR
from recon_ingest.column_mapping import ColumnMappingValidator, FieldRef
from recon_ingest.config import WorkflowConfig
from recon_ingest.errors import (
    InvalidTransitionError,
    ParseError,
    SubmissionError,
    UnsupportedFormatError,
    ValidationError,
)
from recon_ingest.logging_setup import configure_logging, get_logger
from recon_ingest.schema import REQUIRED_FIELDS, CanonicalField, RawFile
from recon_ingest.submitter import BackendClient, IngestionSubmitter
from recon_ingest.suggester import ColumnSuggester, ColumnSuggestion
from recon_ingest.tabular_parser import Row, TabularParser
from recon_ingest.tracker import JobProgressTracker, Scheduler, TrackerSnapshot, TrackerState

logger = get_logger("workflow")

HEADER_ERROR = "Error reading file headers. Please check the file format."
PREVIEW_ERROR = "Error reading file for preview. Please check the file format."


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


@dataclass(frozen=True)
class WorkflowStatus:
    """Everything the operator sees at one instant."""

    file: Optional[RawFile]
    headers: List[str]
    preview: List[Row]
    mapping: Dict[str, str]
    missing_fields: List[str]
    message: Optional[str]
    tracker: TrackerSnapshot
    suggestions: List[ColumnSuggestion] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.file is not None and not self.missing_fields

    @property
    def success(self) -> bool:
        return self.tracker.state is TrackerState.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file.to_dict() if self.file else None,
            "headers": list(self.headers),
            "preview": [
                {k: _json_safe(v) for k, v in row.items()} for row in self.preview
            ],
            "mapping": dict(self.mapping),
            "required": [cf.value for cf in REQUIRED_FIELDS],
            "missing_fields": list(self.missing_fields),
            "ready": self.ready,
            "success": self.success,
            "message": self.message,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "job": self.tracker.to_dict(),
        }


StatusListener = Callable[[WorkflowStatus], None]


class UploadWorkflow:
    """Composes parser, mapping, submitter and tracker for one operator.

    Parameters
    ----------
    client:
        Backend collaborator (``submit_upload`` and ``job_status``).
    config:
        All tuneable knobs.
    scheduler:
        Poll timer factory handed to the tracker.
    suggester:
        Column suggester; built from ``config.mapping`` when omitted.
    """

    def __init__(
        self,
        client: BackendClient,
        config: Optional[WorkflowConfig] = None,
        scheduler: Optional[Scheduler] = None,
        suggester: Optional[ColumnSuggester] = None,
    ) -> None:
        self._config = config or WorkflowConfig()
        configure_logging(level=self._config.log_level)

        self._lock = threading.RLock()
        self._parser = TabularParser(self._config.parser)
        self._validator = ColumnMappingValidator()
        self._submitter = IngestionSubmitter(client, self._validator)
        self._suggester = suggester or ColumnSuggester(self._config.mapping)
        self._tracker = JobProgressTracker(client, self._config.tracker, scheduler)
        self._tracker.add_listener(self._on_tracker_change)
        self._listeners: List[StatusListener] = []

        self._file: Optional[RawFile] = None
        self._preview: List[Row] = []
        self._suggestions: List[ColumnSuggestion] = []
        self._message: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #

    @property
    def tracker(self) -> JobProgressTracker:
        return self._tracker

    def subscribe(self, listener: StatusListener) -> None:
        """Call *listener* with a fresh status after every job change."""
        self._listeners.append(listener)

    def status(self) -> WorkflowStatus:
        with self._lock:
            snap = self._tracker.snapshot()
            message = self._validator.error_message or self._message or snap.message
            return WorkflowStatus(
                file=self._file,
                headers=self._validator.headers,
                preview=list(self._preview),
                mapping=self._validator.as_payload(),
                missing_fields=self._validator.missing_required_fields(),
                message=message,
                tracker=snap,
                suggestions=list(self._suggestions),
            )

    def _on_tracker_change(self, snap: TrackerSnapshot) -> None:
        if snap.state.is_terminal:
            logger.info(
                "Job %s finished %s at %d%%%s",
                snap.job_id, snap.state.value, snap.progress,
                " (duplicate)" if snap.duplicate else "",
            )
        if self._listeners:
            current = self.status()
            for listener in list(self._listeners):
                listener(current)

    # ------------------------------------------------------------------ #
    # File selection and preview
    # ------------------------------------------------------------------ #

    def select_file(self, name: str, data: bytes) -> WorkflowStatus:
        """Adopt a newly selected file and read its headers.

        An unsupported extension or undecodable content leaves the previous
        file, headers and preview in place and only sets the message.
        """
        with self._lock:
            try:
                raw_file = RawFile.from_bytes(name, data)
                headers = self._parser.extract_headers(raw_file)
            except UnsupportedFormatError as exc:
                logger.warning("Rejected %r: %s", name, exc.message)
                self._message = exc.message
                return self.status()
            except ParseError as exc:
                logger.warning("Error parsing file headers of %r: %s", name, exc.message)
                self._message = HEADER_ERROR
                return self.status()

            self._file = raw_file
            self._preview = []
            self._suggestions = []
            self._validator.replace_headers(headers)
            self._validator.error_message = None
            self._message = None
            logger.info(
                "Selected %r (%.2f MB, %s) with %d columns",
                raw_file.name, raw_file.size_mb, raw_file.format.value, len(headers),
            )
            return self.status()

    def preview(self) -> WorkflowStatus:
        """Load up to ``preview_rows`` records for display."""
        with self._lock:
            if self._file is None:
                return self.status()
            try:
                self._preview = self._parser.extract_rows(self._file)
            except ParseError as exc:
                logger.warning("Error parsing %r for preview: %s", self._file.name, exc.message)
                self._message = PREVIEW_ERROR
            return self.status()

    # ------------------------------------------------------------------ #
    # Mapping
    # ------------------------------------------------------------------ #

    def set_mapping(self, field: FieldRef, header: Optional[str]) -> WorkflowStatus:
        """Record one operator selection.

        Raises
        ------
        ValueError
            Unknown canonical field, or a header the file does not have.
        """
        with self._lock:
            self._validator.set_mapping(field, header)
            return self.status()

    def suggest_mapping(self) -> List[ColumnSuggestion]:
        """Compute suggestions for the current headers without applying them."""
        with self._lock:
            self._suggestions = self._suggester.suggest(self._validator.headers)
            return list(self._suggestions)

    def apply_suggestions(
        self, suggestions: Optional[Mapping[FieldRef, Optional[str]]] = None
    ) -> WorkflowStatus:
        """Apply suggestions (or an explicit mapping) as one operator action.

        With no argument the last computed suggestions are applied. The
        mapping is checked afterwards so a still-missing required field is
        reported right away.
        """
        with self._lock:
            if suggestions is None:
                suggestions = {s.field: s.header for s in self._suggestions}
            self._validator.apply(suggestions)
            if self._file is not None:
                self._validator.check()
            return self.status()

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    def submit(self) -> WorkflowStatus:
        """Validate, upload and start tracking the job.

        The network call runs outside the workflow lock; a reset issued
        meanwhile wins and the late answer is dropped.
        """
        with self._lock:
            if self._tracker.state.is_busy:
                self._message = "An upload is already in progress."
                logger.warning("Submit rejected: tracker is %s", self._tracker.state.value)
                return self.status()
            self._message = None
            if self._file is None:
                self._message = "Please select a file first"
                return self.status()
            if not self._validator.check():
                return self.status()
            try:
                self._tracker.begin_submission()
            except InvalidTransitionError as exc:
                self._message = exc.message
                return self.status()
            raw_file = self._file
            generation = self._tracker.snapshot().generation

        try:
            result = self._submitter.submit(raw_file)
        except (ValidationError, SubmissionError) as exc:
            with self._lock:
                if self._still_submitting(generation):
                    self._tracker.submission_rejected(exc.message)
                return self.status()
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error submitting %r", raw_file.name)
            with self._lock:
                if self._still_submitting(generation):
                    self._tracker.submission_rejected(GENERIC_UPLOAD_ERROR)
                return self.status()

        with self._lock:
            if not self._still_submitting(generation):
                logger.info("Dropping submission result for job %s after reset", result.job_id)
                return self.status()
            if result.is_duplicate:
                self._tracker.finish_duplicate(result.job_id, result.duplicate_notice)
            else:
                self._tracker.start(result.job_id)
            return self.status()

    def _still_submitting(self, generation: int) -> bool:
        snap = self._tracker.snapshot()
        return snap.state is TrackerState.SUBMITTING and snap.generation == generation

    # ------------------------------------------------------------------ #
    # Reset
    # ------------------------------------------------------------------ #

    def reset(self) -> WorkflowStatus:
        """Drop the file, headers, preview, mapping, message and job."""
        with self._lock:
            self._file = None
            self._preview = []
            self._suggestions = []
            self._validator.replace_headers([])
            self._validator.clear()
            self._message = None
            self._tracker.reset()
            logger.info("Workflow reset")
            return self.status()

    def close(self) -> None:
        """Teardown: same as ``reset``."""
        self.reset()

    @staticmethod
    def canonical_fields() -> List[Dict[str, Any]]:
        return [
            {"field": cf.value, "label": cf.label, "required": cf.required}
            for cf in CanonicalField
        ]
