"""
Configuration module for recon_ingest.

Every tuneable value (preview size, matching thresholds, endpoint paths,
poll period) lives here. Business modules receive these objects through
their constructors and never read the environment themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass(frozen=True)
class ParserConfig:
    """Controls in-memory decoding of tabular files."""

    # Number of data records materialised for the preview table
    preview_rows: int = 10

    # Text encoding for CSV payloads; a leading BOM is always tolerated
    csv_encoding: str = "utf-8-sig"


@dataclass(frozen=True)
class MappingConfig:
    """Controls column suggestions offered to the operator."""

    # Minimum rapidfuzz score (0–100) for a header to be suggested
    fuzzy_threshold: float = 80.0

    # Two headers scoring within this delta of each other are flagged as
    # ambiguous rather than silently preferred.
    fuzzy_ambiguity_delta: float = 5.0


@dataclass(frozen=True)
class ClientConfig:
    """Where and how the processing backend is reached."""

    base_url: str = "http://localhost:5000"

    upload_path: str = "/api/uploads"

    # ``{job_id}`` is substituted with the server-issued identifier
    progress_path: str = "/api/uploads/{job_id}/progress"

    # Seconds before a single HTTP request is abandoned
    timeout: float = 30.0

    # Sent as ``Authorization: Bearer <token>`` when set
    api_token: Optional[str] = None


@dataclass(frozen=True)
class TrackerConfig:
    """Controls the job polling loop."""

    # Seconds between the end of one status poll and the start of the next
    poll_interval: float = 1.0


@dataclass(frozen=True)
class WorkflowConfig:
    """Top-level configuration aggregating all sub-configs."""

    parser: ParserConfig = field(default_factory=ParserConfig)
    mapping: MappingConfig = field(default_factory=MappingConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    # Level constant or name, e.g. "DEBUG"
    log_level: Union[int, str] = logging.INFO
