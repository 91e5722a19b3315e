"""
Centralised logging for recon_ingest.

Modules obtain their logger via ``get_logger(<module>)``. ``UploadWorkflow``
calls ``configure_logging`` when it is built so the submission, polling and
parsing loggers share one handler set. Poll callbacks run on timer threads,
so the thread name is part of every record.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union


NAMESPACE = "recon_ingest"

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)-12s | %(name)-28s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Install handlers on the ``recon_ingest`` logger.

    Parameters
    ----------
    level:
        Minimum severity, as a ``logging`` constant or a name such as
        ``"DEBUG"`` (the console reads it from ``RECON_LOG_LEVEL``).
    log_file:
        If provided, a ``FileHandler`` is added next to the console handler.

    Handlers are installed once per process; later calls only adjust the
    level.
    """
    global _configured  # noqa: PLW0603

    numeric = _resolve_level(level)
    root = logging.getLogger(NAMESPACE)
    root.setLevel(numeric)

    if _configured:
        for handler in root.handlers:
            handler.setLevel(numeric)
        return

    root.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(numeric)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``recon_ingest`` namespace."""
    return logging.getLogger(f"{NAMESPACE}.{name}")
