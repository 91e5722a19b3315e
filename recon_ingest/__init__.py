"""
recon_ingest: client-side ingestion for reconciliation uploads.

Parses an operator's CSV or spreadsheet in memory, maps its columns onto the
canonical transaction fields, submits the untouched file with that mapping to
the reconciliation backend, and polls the resulting job to completion.

Nothing is submitted until the required fields are mapped, and every failure
surfaces as a single operator-visible message.
"""

__version__ = "1.0.0"

from recon_ingest.workflow import UploadWorkflow  # noqa: F401
